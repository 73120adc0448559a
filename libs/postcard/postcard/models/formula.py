"""Formula helpers on top of patsy.

Formulas are patsy strings such as ``"Y ~ A + X1"``. An R style ``.`` on the
right hand side expands to every column of the data other than the response.
"""

from __future__ import annotations

import ast
import re

import pandas as pd
from patsy import ModelDesc, PatsyError

from ..core.base import IncompatibleData, ResponseNotFound, ValidationError

_DOT = re.compile(r"(?<![\w.])\.(?![\w.])")


def split_formula(formula: str) -> tuple[str, str]:
    """Split a two-sided formula into (response, right hand side)."""
    if not isinstance(formula, str) or formula.count("~") != 1:
        raise ValidationError(
            f"Formula must be a string of the form 'response ~ terms', got {formula!r}"
        )
    lhs, rhs = (part.strip() for part in formula.split("~"))
    if not lhs:
        raise ValidationError(f"Formula {formula!r} has no response")
    if not rhs:
        raise ValidationError(f"Formula {formula!r} has no right hand side")
    return lhs, rhs


def response_name(formula: str) -> str:
    """Name of the response of a formula."""
    return split_formula(formula)[0]


def expand_dot(formula: str, data: pd.DataFrame) -> str:
    """Expand ``.`` on the right hand side to all non-response columns."""
    response, rhs = split_formula(formula)
    if not _DOT.search(rhs):
        return f"{response} ~ {rhs}"

    columns = [str(c) for c in data.columns if str(c) != response]
    if not columns:
        raise ValidationError(
            f"Cannot expand '.' in {formula!r}: data has no columns besides '{response}'"
        )
    return f"{response} ~ {_DOT.sub(' + '.join(columns), rhs)}"


def add_term(formula: str, term: str) -> str:
    """Append ``term`` to the right hand side of ``formula``."""
    response, rhs = split_formula(formula)
    return f"{response} ~ {rhs} + {term}"


def _code_variables(code: str) -> list[str]:
    try:
        tree = ast.parse(code, mode="eval")
    except SyntaxError:
        return [code]

    called = {
        id(node.func)
        for node in ast.walk(tree)
        if isinstance(node, ast.Call)
    }
    attribute_bases = {
        id(node.value) for node in ast.walk(tree) if isinstance(node, ast.Attribute)
    }
    names = []
    for node in ast.walk(tree):
        if (
            isinstance(node, ast.Name)
            and id(node) not in called
            and id(node) not in attribute_bases
        ):
            names.append(node.id)
    return names


def formula_variables(formula: str, side: str = "rhs") -> list[str]:
    """Column names referenced on one side of a formula.

    Args:
        formula: patsy formula
        side: 'rhs', 'lhs' or 'both'

    Returns:
        Variable names in order of first appearance
    """
    try:
        desc = ModelDesc.from_formula(formula)
    except PatsyError as e:
        raise ValidationError(f"Could not parse formula {formula!r}: {e}") from e

    terms = []
    if side in ("lhs", "both"):
        terms.extend(desc.lhs_termlist)
    if side in ("rhs", "both"):
        terms.extend(desc.rhs_termlist)

    seen: dict[str, None] = {}
    for term in terms:
        for factor in term.factors:
            for name in _code_variables(factor.code):
                seen.setdefault(name, None)
    return list(seen)


def check_formula_columns(formula: str, data: pd.DataFrame, data_name: str = "data") -> None:
    """Check that every variable in ``formula`` is a column of ``data``.

    Raises:
        ResponseNotFound: If the response is missing
        IncompatibleData: If a predictor is missing
    """
    columns = {str(c) for c in data.columns}
    for name in formula_variables(formula, side="lhs"):
        if name not in columns:
            raise ResponseNotFound(
                f"Response '{name}' of formula {formula!r} is not a column of {data_name}"
            )
    missing = [name for name in formula_variables(formula) if name not in columns]
    if missing:
        raise IncompatibleData(
            f"Formula {formula!r} references columns not in {data_name}: "
            f"{', '.join(missing)}"
        )
