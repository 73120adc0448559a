"""GLM fitting and formula utilities."""

from .formula import (
    add_term,
    check_formula_columns,
    expand_dot,
    formula_variables,
    response_name,
    split_formula,
)
from .glm import GlmModel, fit_glm, resolve_family

__all__ = [
    "GlmModel",
    "add_term",
    "check_formula_columns",
    "expand_dot",
    "fit_glm",
    "formula_variables",
    "resolve_family",
    "response_name",
    "split_formula",
]
