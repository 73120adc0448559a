"""Symbolic differentiation of estimand functions."""

from .differentiation import (
    DerivativePair,
    SymbolicDifferentiator,
    compile_expression,
    derive,
    estimand_body,
    parse_estimand_function,
)
from .expression import Expression

__all__ = [
    "DerivativePair",
    "Expression",
    "SymbolicDifferentiator",
    "compile_expression",
    "derive",
    "estimand_body",
    "parse_estimand_function",
]
