"""Estimand specifications and their resolution.

An estimand is either one of the built-in functions of the counterfactual
means (``"ate"``, ``"rate_ratio"``) or a user callable ``r(psi1, psi0)``,
optionally with manually specified partial derivatives.
"""

from __future__ import annotations

import functools
import inspect
from dataclasses import dataclass
from typing import Any, Callable, Union

from ..core.base import UnsupportedExpression, ValidationError
from ..symbolic.differentiation import PARAMETER_NAMES, SymbolicDifferentiator, estimand_body

EstimandFunction = Callable[[Any, Any], Any]


def bind_by_name(fun: EstimandFunction) -> EstimandFunction:
    """Return a callable taking ``(psi1, psi0)`` positionally.

    A function declared as ``r(psi0, psi1)`` receives each mean under its
    own name. Other callables are returned unchanged and are called as
    ``fun(psi1, psi0)``.
    """
    try:
        params = list(inspect.signature(fun, follow_wrapped=False).parameters)
    except (TypeError, ValueError):
        return fun
    if params != list(reversed(PARAMETER_NAMES)):
        return fun

    @functools.wraps(fun)
    def called_by_name(psi1, psi0):
        return fun(psi0, psi1)

    return called_by_name


def ate(psi1, psi0):
    return psi1 - psi0


def rate_ratio(psi1, psi0):
    return psi1 / psi0


DEFAULT_ESTIMAND_FUNS: dict[str, EstimandFunction] = {
    "ate": ate,
    "rate_ratio": rate_ratio,
}


def default_estimand_funs(default: str = "ate") -> EstimandFunction:
    """Return a built-in estimand function by name.

    Args:
        default: One of "ate", "rate_ratio"

    Raises:
        ValidationError: If the name is not a built-in estimand
    """
    if default not in DEFAULT_ESTIMAND_FUNS:
        options = ", ".join(f'"{name}"' for name in DEFAULT_ESTIMAND_FUNS)
        raise ValidationError(
            f"'estimand_fun' should be one of {options} or a callable, got {default!r}"
        )
    return DEFAULT_ESTIMAND_FUNS[default]


@dataclass(frozen=True)
class BuiltInEstimand:
    """Built-in estimand referenced by name."""

    name: str


@dataclass(frozen=True)
class CustomEstimand:
    """User supplied estimand function with optional derivatives."""

    fun: EstimandFunction
    deriv0: EstimandFunction | None = None
    deriv1: EstimandFunction | None = None


EstimandSpec = Union[BuiltInEstimand, CustomEstimand]


@dataclass(frozen=True)
class ResolvedEstimand:
    """Estimand function together with both partial derivatives.

    Attributes:
        name: Built-in name or the callable's ``__name__``
        fun: r(psi1, psi0)
        deriv0: d r / d psi0
        deriv1: d r / d psi1
        body: Rendered body of ``fun``
        derivative_source: 'symbolic', 'user' or 'mixed'
    """

    name: str
    fun: EstimandFunction
    deriv0: EstimandFunction
    deriv1: EstimandFunction
    body: str
    derivative_source: str


def to_estimand_spec(
    estimand_fun: str | EstimandFunction,
    estimand_fun_deriv0: EstimandFunction | None = None,
    estimand_fun_deriv1: EstimandFunction | None = None,
) -> EstimandSpec:
    """Classify the user's ``estimand_fun`` argument."""
    if isinstance(estimand_fun, str):
        default_estimand_funs(estimand_fun)
        if estimand_fun_deriv0 is None and estimand_fun_deriv1 is None:
            return BuiltInEstimand(estimand_fun)
        return CustomEstimand(
            DEFAULT_ESTIMAND_FUNS[estimand_fun], estimand_fun_deriv0, estimand_fun_deriv1
        )
    if not callable(estimand_fun):
        raise ValidationError(
            f"'estimand_fun' must be a string or a callable, got {type(estimand_fun).__name__}"
        )
    for arg_name, deriv in (
        ("estimand_fun_deriv0", estimand_fun_deriv0),
        ("estimand_fun_deriv1", estimand_fun_deriv1),
    ):
        if deriv is not None and not callable(deriv):
            raise ValidationError(f"'{arg_name}' must be callable or None")
    return CustomEstimand(estimand_fun, estimand_fun_deriv0, estimand_fun_deriv1)


def resolve_estimand(spec: EstimandSpec, verbose: int = 0) -> ResolvedEstimand:
    """Resolve an estimand specification into functions and derivatives.

    Missing derivatives are derived symbolically.

    Raises:
        UnsupportedExpression: If a derivative is missing and the function
            cannot be differentiated symbolically
    """
    if isinstance(spec, BuiltInEstimand):
        name = spec.name
        fun = DEFAULT_ESTIMAND_FUNS[name]
        deriv0 = deriv1 = None
    else:
        fun = spec.fun
        name = next(
            (k for k, v in DEFAULT_ESTIMAND_FUNS.items() if v is fun),
            getattr(fun, "__name__", type(fun).__name__),
        )
        deriv0, deriv1 = spec.deriv0, spec.deriv1

    if deriv0 is not None and deriv1 is not None:
        return ResolvedEstimand(
            name=name,
            fun=bind_by_name(fun),
            deriv0=bind_by_name(deriv0),
            deriv1=bind_by_name(deriv1),
            body=estimand_body(fun),
            derivative_source="user",
        )

    try:
        derived = SymbolicDifferentiator(verbose=verbose).derive(fun)
    except UnsupportedExpression as e:
        raise UnsupportedExpression(
            f"{e}. Specify 'estimand_fun_deriv0' and 'estimand_fun_deriv1' manually."
        ) from e

    return ResolvedEstimand(
        name=name,
        fun=bind_by_name(fun),
        deriv0=bind_by_name(deriv0) if deriv0 is not None else derived.deriv0,
        deriv1=bind_by_name(deriv1) if deriv1 is not None else derived.deriv1,
        body=estimand_body(fun),
        derivative_source="symbolic" if deriv0 is None and deriv1 is None else "mixed",
    )
