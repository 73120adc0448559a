"""Symbolic differentiation of estimand functions.

An estimand function ``r(psi1, psi0)`` written as ordinary Python, e.g.

    >>> def rate_ratio(psi1, psi0):
    ...     return psi1 / psi0

is parsed from its source into an expression tree and differentiated
exactly with respect to both arguments. Functions outside the supported
grammar raise ``UnsupportedExpression``; derivatives then have to be passed
manually.
"""

from __future__ import annotations

import ast
import inspect
import logging
import numbers
import textwrap
import types
from dataclasses import dataclass
from typing import Any, Callable

from ..core.base import UnsupportedExpression, log_at
from .expression import (
    SUPPORTED_FUNCTIONS,
    Constant,
    Expression,
    Variable,
    add,
    call,
    div,
    mul,
    neg,
    power,
    sub,
)

logger = logging.getLogger(__name__)

PARAMETER_NAMES = ("psi1", "psi0")

_MODULE_ALIASES = {"math", "np", "numpy"}

EstimandFunction = Callable[[float, float], float]


@dataclass(frozen=True)
class DerivativePair:
    """Partial derivatives of an estimand function.

    Attributes:
        deriv0: d r / d psi0 as a callable of (psi1, psi0)
        deriv1: d r / d psi1 as a callable of (psi1, psi0)
        expression0: Rendered expression of ``deriv0`` when derived symbolically
        expression1: Rendered expression of ``deriv1`` when derived symbolically
    """

    deriv0: EstimandFunction
    deriv1: EstimandFunction
    expression0: str | None = None
    expression1: str | None = None


def compile_expression(expr: Expression, name: str = "expression") -> EstimandFunction:
    """Turn an expression tree into a callable of (psi1, psi0)."""

    def fun(psi1: Any, psi0: Any) -> Any:
        return expr.evaluate({"psi1": psi1, "psi0": psi0})

    fun.__name__ = name
    fun.__qualname__ = name
    fun.__doc__ = str(expr)
    fun.expression = expr  # type: ignore[attr-defined]
    return fun


class _ExpressionBuilder:
    """Convert an ``ast`` expression into an ``Expression`` tree."""

    def __init__(self, bindings: dict[str, Expression], namespace: dict[str, Any]):
        self.bindings = bindings
        self.namespace = namespace

    def build(self, node: ast.AST) -> Expression:
        if isinstance(node, ast.Constant):
            return self._constant(node.value)

        if isinstance(node, ast.Name):
            return self._name(node.id)

        if isinstance(node, ast.UnaryOp):
            operand = self.build(node.operand)
            if isinstance(node.op, ast.USub):
                return neg(operand)
            if isinstance(node.op, ast.UAdd):
                return operand
            raise UnsupportedExpression(
                f"Unsupported unary operator '{type(node.op).__name__}'"
            )

        if isinstance(node, ast.BinOp):
            left, right = self.build(node.left), self.build(node.right)
            if isinstance(node.op, ast.Add):
                return add(left, right)
            if isinstance(node.op, ast.Sub):
                return sub(left, right)
            if isinstance(node.op, ast.Mult):
                return mul(left, right)
            if isinstance(node.op, ast.Div):
                return div(left, right)
            if isinstance(node.op, ast.Pow):
                return power(left, right)
            raise UnsupportedExpression(
                f"Unsupported binary operator '{type(node.op).__name__}'"
            )

        if isinstance(node, ast.Call):
            return self._call(node)

        raise UnsupportedExpression(
            f"Unsupported syntax '{type(node).__name__}' in estimand function"
        )

    def _constant(self, value: Any) -> Expression:
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            raise UnsupportedExpression(f"Unsupported constant {value!r}")
        return Constant(float(value))

    def _name(self, name: str) -> Expression:
        if name in self.bindings:
            return self.bindings[name]
        if name in self.namespace:
            value = self.namespace[name]
            if isinstance(value, numbers.Real) and not isinstance(value, bool):
                return Constant(float(value))
            raise UnsupportedExpression(
                f"Name '{name}' does not refer to a number or to psi1/psi0"
            )
        raise UnsupportedExpression(f"Unknown name '{name}' in estimand function")

    def _call(self, node: ast.Call) -> Expression:
        func = node.func
        if isinstance(func, ast.Name):
            func_name = func.id
        elif (
            isinstance(func, ast.Attribute)
            and isinstance(func.value, ast.Name)
            and func.value.id in _MODULE_ALIASES
        ):
            func_name = func.attr
        else:
            raise UnsupportedExpression(
                f"Unsupported function call '{ast.unparse(func)}'"
            )

        if node.keywords:
            raise UnsupportedExpression(
                f"Keyword arguments are not supported in call to '{func_name}'"
            )

        args = [self.build(arg) for arg in node.args]

        if func_name in ("pow", "power") and len(args) == 2:
            return power(args[0], args[1])
        if func_name in SUPPORTED_FUNCTIONS and len(args) == 1:
            return call(func_name, args[0])

        raise UnsupportedExpression(
            f"Unsupported function '{func_name}' with {len(args)} argument(s); "
            f"supported are {sorted(SUPPORTED_FUNCTIONS | {'pow'})}"
        )


def _function_namespace(fun: Callable[..., Any]) -> dict[str, Any]:
    """Numeric globals and closure variables visible to ``fun``."""
    try:
        closure = inspect.getclosurevars(fun)
    except (TypeError, ValueError):
        return {}
    namespace: dict[str, Any] = {}
    namespace.update(closure.builtins)
    namespace.update(closure.globals)
    namespace.update(closure.nonlocals)
    return namespace


def _parse_fragment(source: str) -> ast.AST:
    """Parse source that may be cut out of a larger statement."""
    try:
        return ast.parse(source)
    except SyntaxError:
        pass

    start = source.find("lambda")
    if start < 0:
        raise UnsupportedExpression("Could not parse the estimand function source")
    fragment = source[start:]
    for end in range(len(fragment), 0, -1):
        try:
            return ast.parse(fragment[:end], mode="eval")
        except SyntaxError:
            continue
    raise UnsupportedExpression("Could not parse the estimand function source")


def _same_code(node: ast.Lambda, fun: Callable[..., Any]) -> bool:
    try:
        code = compile(ast.Expression(body=node), "<estimand>", "eval")
    except (SyntaxError, ValueError):
        return False
    inner = [c for c in code.co_consts if isinstance(c, types.CodeType)]
    return bool(inner) and inner[0].co_code == fun.__code__.co_code


def _locate_function(fun: Callable[..., Any]) -> ast.FunctionDef | ast.Lambda:
    try:
        source = textwrap.dedent(inspect.getsource(fun))
    except (OSError, TypeError) as e:
        raise UnsupportedExpression(
            f"Source of {fun!r} is not available for symbolic differentiation"
        ) from e

    tree = _parse_fragment(source)
    name = getattr(fun, "__name__", "")

    if name != "<lambda>":
        for node in ast.walk(tree):
            if isinstance(node, ast.FunctionDef) and node.name == name:
                return node
        raise UnsupportedExpression(f"Could not find the definition of '{name}'")

    params = list(inspect.signature(fun).parameters)
    candidates = [
        node
        for node in ast.walk(tree)
        if isinstance(node, ast.Lambda) and [a.arg for a in node.args.args] == params
    ]
    if len(candidates) > 1:
        matching = [node for node in candidates if _same_code(node, fun)]
        if matching:
            candidates = matching
    if not candidates:
        raise UnsupportedExpression("Could not locate the lambda in its source")
    if len({ast.dump(node.body) for node in candidates}) > 1:
        raise UnsupportedExpression(
            "Several different lambdas are defined on the same line; "
            "define the estimand function on its own"
        )
    return candidates[0]


def _check_signature(fun: Callable[..., Any]) -> None:
    try:
        params = inspect.signature(fun).parameters
    except (TypeError, ValueError) as e:
        raise UnsupportedExpression(f"Cannot inspect signature of {fun!r}") from e

    names = set(params)
    if names != set(PARAMETER_NAMES):
        raise UnsupportedExpression(
            f"Estimand function must take exactly the arguments psi1 and psi0, "
            f"got ({', '.join(params)})"
        )
    for param in params.values():
        if param.kind not in (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
        ):
            raise UnsupportedExpression(
                "Estimand function arguments must be plain positional arguments"
            )


def parse_estimand_function(fun: Callable[..., Any]) -> Expression:
    """Parse the body of an estimand function into an expression tree.

    Args:
        fun: A ``def`` or ``lambda`` taking ``psi1`` and ``psi0``

    Returns:
        Expression tree of the returned value

    Raises:
        UnsupportedExpression: If the function is outside the supported grammar
    """
    _check_signature(fun)
    node = _locate_function(fun)
    builder = _ExpressionBuilder(
        bindings={name: Variable(name) for name in PARAMETER_NAMES},
        namespace=_function_namespace(fun),
    )

    if isinstance(node, ast.Lambda):
        return builder.build(node.body)

    body = list(node.body)
    if (
        body
        and isinstance(body[0], ast.Expr)
        and isinstance(body[0].value, ast.Constant)
        and isinstance(body[0].value.value, str)
    ):
        body = body[1:]

    if not body or not isinstance(body[-1], ast.Return) or body[-1].value is None:
        raise UnsupportedExpression("Estimand function must end with 'return <expr>'")

    for statement in body[:-1]:
        if (
            isinstance(statement, ast.Assign)
            and len(statement.targets) == 1
            and isinstance(statement.targets[0], ast.Name)
        ):
            target = statement.targets[0].id
            if target in PARAMETER_NAMES:
                raise UnsupportedExpression(f"Reassignment of '{target}' is not supported")
            builder.bindings[target] = builder.build(statement.value)
            continue
        raise UnsupportedExpression(
            f"Unsupported statement '{type(statement).__name__}' in estimand function; "
            "only simple assignments followed by a return are supported"
        )

    return builder.build(body[-1].value)


def estimand_body(fun: Callable[..., Any]) -> str:
    """Render the body of an estimand function as an expression string.

    Falls back to the function's source, or its repr, when the body is
    outside the supported grammar.
    """
    try:
        return str(parse_estimand_function(fun))
    except UnsupportedExpression:
        pass
    try:
        return textwrap.dedent(inspect.getsource(fun)).strip()
    except (OSError, TypeError):
        return repr(fun)


class SymbolicDifferentiator:
    """Derive exact partial derivatives of estimand functions.

    Attributes:
        verbose: 0 silent, >= 1 logs the derived expressions
    """

    def __init__(self, verbose: int = 0) -> None:
        self.verbose = verbose

    def derive(self, estimand_fun: Callable[..., Any]) -> DerivativePair:
        """Differentiate ``estimand_fun`` with respect to psi0 and psi1.

        Args:
            estimand_fun: Callable r(psi1, psi0)

        Returns:
            DerivativePair with callables and rendered expressions

        Raises:
            UnsupportedExpression: If the function cannot be parsed
        """
        expr = parse_estimand_function(estimand_fun)
        d0 = expr.diff("psi0")
        d1 = expr.diff("psi1")

        log_at(
            logger,
            self.verbose,
            1,
            "Symbolically deriving partial derivative of the function '%s' "
            "with respect to 'psi0' as: '%s'",
            expr,
            d0,
        )
        log_at(
            logger,
            self.verbose,
            1,
            "Symbolically deriving partial derivative of the function '%s' "
            "with respect to 'psi1' as: '%s'",
            expr,
            d1,
        )

        return DerivativePair(
            deriv0=compile_expression(d0, "estimand_fun_deriv0"),
            deriv1=compile_expression(d1, "estimand_fun_deriv1"),
            expression0=str(d0),
            expression1=str(d1),
        )


def derive(estimand_fun: Callable[..., Any], verbose: int = 0) -> DerivativePair:
    """Differentiate an estimand function; see ``SymbolicDifferentiator``."""
    return SymbolicDifferentiator(verbose=verbose).derive(estimand_fun)
