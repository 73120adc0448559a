"""Expression trees for estimand functions of two counterfactual means.

The grammar is deliberately small: numeric constants, the variables ``psi1``
and ``psi0``, unary minus, ``+ - * / **`` and the elementary functions
``sqrt``, ``exp`` and ``log``. Trees are immutable; the helper constructors
(``add``, ``mul``, ...) simplify as they build.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable

import numpy as np

# Operator precedence used when rendering expressions
_PRECEDENCE = {"+": 1, "-": 1, "*": 2, "/": 2, "neg": 3, "**": 4, "atom": 5}

_FUNCTIONS: dict[str, Callable[[Any], Any]] = {
    "sqrt": np.sqrt,
    "exp": np.exp,
    "log": np.log,
}

_SCALAR_FUNCTIONS: dict[str, Callable[[float], float]] = {
    "sqrt": math.sqrt,
    "exp": math.exp,
    "log": math.log,
}

SUPPORTED_FUNCTIONS = frozenset(_FUNCTIONS)


class Expression:
    """Base class of all expression tree nodes."""

    def evaluate(self, env: dict[str, Any]) -> Any:
        raise NotImplementedError

    def diff(self, var: str) -> Expression:
        raise NotImplementedError

    def variables(self) -> frozenset[str]:
        raise NotImplementedError

    @property
    def precedence(self) -> int:
        return _PRECEDENCE["atom"]

    def depends_on(self, var: str) -> bool:
        return var in self.variables()


@dataclass(frozen=True)
class Constant(Expression):
    value: float

    def evaluate(self, env: dict[str, Any]) -> Any:
        return self.value

    def diff(self, var: str) -> Expression:
        return ZERO

    def variables(self) -> frozenset[str]:
        return frozenset()

    @property
    def precedence(self) -> int:
        # Negative literals render with a leading minus
        return _PRECEDENCE["neg"] if self.value < 0 else _PRECEDENCE["atom"]

    def __str__(self) -> str:
        if float(self.value).is_integer():
            return str(int(self.value))
        return repr(float(self.value))


@dataclass(frozen=True)
class Variable(Expression):
    name: str

    def evaluate(self, env: dict[str, Any]) -> Any:
        return env[self.name]

    def diff(self, var: str) -> Expression:
        return ONE if self.name == var else ZERO

    def variables(self) -> frozenset[str]:
        return frozenset({self.name})

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Negate(Expression):
    operand: Expression

    def evaluate(self, env: dict[str, Any]) -> Any:
        return np.negative(self.operand.evaluate(env))

    def diff(self, var: str) -> Expression:
        return neg(self.operand.diff(var))

    def variables(self) -> frozenset[str]:
        return self.operand.variables()

    @property
    def precedence(self) -> int:
        return _PRECEDENCE["neg"]

    def __str__(self) -> str:
        inner = str(self.operand)
        if self.operand.precedence < _PRECEDENCE["**"]:
            inner = f"({inner})"
        return f"-{inner}"


@dataclass(frozen=True)
class BinaryOp(Expression):
    op: str
    left: Expression
    right: Expression

    def evaluate(self, env: dict[str, Any]) -> Any:
        a = self.left.evaluate(env)
        b = self.right.evaluate(env)
        if self.op == "+":
            return np.add(a, b)
        if self.op == "-":
            return np.subtract(a, b)
        if self.op == "*":
            return np.multiply(a, b)
        if self.op == "/":
            return np.true_divide(a, b)
        return np.float_power(a, b)

    def diff(self, var: str) -> Expression:
        u, v = self.left, self.right
        du, dv = u.diff(var), v.diff(var)

        if self.op == "+":
            return add(du, dv)
        if self.op == "-":
            return sub(du, dv)
        if self.op == "*":
            return add(mul(du, v), mul(u, dv))
        if self.op == "/":
            # u'/v - u v'/v^2
            return sub(div(du, v), div(mul(u, dv), power(v, Constant(2.0))))

        # Power rule, exponential rule, or the general case
        if not v.depends_on(var):
            return mul(mul(v, power(u, sub(v, ONE))), du)
        if not u.depends_on(var):
            return mul(mul(self, call("log", u)), dv)
        return mul(self, add(mul(dv, call("log", u)), div(mul(v, du), u)))

    def variables(self) -> frozenset[str]:
        return self.left.variables() | self.right.variables()

    @property
    def precedence(self) -> int:
        return _PRECEDENCE[self.op]

    def __str__(self) -> str:
        prec = self.precedence
        left, right = str(self.left), str(self.right)

        if self.op == "**":
            # Right associative
            if self.left.precedence <= prec:
                left = f"({left})"
            if self.right.precedence < prec:
                right = f"({right})"
        else:
            if self.left.precedence < prec:
                left = f"({left})"
            if self.right.precedence < prec or (
                self.right.precedence == prec and self.op in ("-", "/")
            ):
                right = f"({right})"
        return f"{left} {self.op} {right}"


@dataclass(frozen=True)
class Call(Expression):
    func: str
    arg: Expression

    def evaluate(self, env: dict[str, Any]) -> Any:
        return _FUNCTIONS[self.func](self.arg.evaluate(env))

    def diff(self, var: str) -> Expression:
        du = self.arg.diff(var)
        if self.func == "sqrt":
            return div(du, mul(Constant(2.0), self))
        if self.func == "exp":
            return mul(self, du)
        return div(du, self.arg)

    def variables(self) -> frozenset[str]:
        return self.arg.variables()

    def __str__(self) -> str:
        return f"{self.func}({self.arg})"


ZERO = Constant(0.0)
ONE = Constant(1.0)


def _is_const(expr: Expression, value: float | None = None) -> bool:
    if not isinstance(expr, Constant):
        return False
    return value is None or expr.value == value


def neg(a: Expression) -> Expression:
    if isinstance(a, Constant):
        return Constant(-a.value)
    if isinstance(a, Negate):
        return a.operand
    return Negate(a)


def add(a: Expression, b: Expression) -> Expression:
    if isinstance(a, Constant) and isinstance(b, Constant):
        return Constant(a.value + b.value)
    if _is_const(a, 0.0):
        return b
    if _is_const(b, 0.0):
        return a
    if isinstance(b, Negate):
        return sub(a, b.operand)
    return BinaryOp("+", a, b)


def sub(a: Expression, b: Expression) -> Expression:
    if isinstance(a, Constant) and isinstance(b, Constant):
        return Constant(a.value - b.value)
    if _is_const(b, 0.0):
        return a
    if _is_const(a, 0.0):
        return neg(b)
    if isinstance(b, Negate):
        return add(a, b.operand)
    return BinaryOp("-", a, b)


def mul(a: Expression, b: Expression) -> Expression:
    if isinstance(a, Constant) and isinstance(b, Constant):
        return Constant(a.value * b.value)
    if _is_const(a, 0.0) or _is_const(b, 0.0):
        return ZERO
    if _is_const(a, 1.0):
        return b
    if _is_const(b, 1.0):
        return a
    if _is_const(a, -1.0):
        return neg(b)
    if _is_const(b, -1.0):
        return neg(a)
    if isinstance(a, Negate):
        return neg(mul(a.operand, b))
    if isinstance(b, Negate):
        return neg(mul(a, b.operand))
    return BinaryOp("*", a, b)


def div(a: Expression, b: Expression) -> Expression:
    if _is_const(a, 0.0) and not _is_const(b, 0.0):
        return ZERO
    if _is_const(b, 1.0):
        return a
    if isinstance(a, Constant) and isinstance(b, Constant) and b.value != 0:
        return Constant(a.value / b.value)
    if isinstance(a, Negate):
        return neg(div(a.operand, b))
    return BinaryOp("/", a, b)


def power(a: Expression, b: Expression) -> Expression:
    if _is_const(b, 0.0):
        return ONE
    if _is_const(b, 1.0):
        return a
    if isinstance(a, Constant) and isinstance(b, Constant):
        try:
            return Constant(float(a.value**b.value))
        except (OverflowError, ZeroDivisionError, TypeError):
            pass
    return BinaryOp("**", a, b)


def call(func: str, arg: Expression) -> Expression:
    if func not in _FUNCTIONS:
        raise ValueError(f"Unsupported function: {func}")
    if func == "log" and isinstance(arg, Call) and arg.func == "exp":
        return arg.arg
    if isinstance(arg, Constant):
        try:
            return Constant(_SCALAR_FUNCTIONS[func](arg.value))
        except (ValueError, OverflowError):
            pass
    return Call(func, arg)
