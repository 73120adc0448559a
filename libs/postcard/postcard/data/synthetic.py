"""Synthetic data with a known GLM mean.

Used to simulate trials and historical data for examples and tests.
"""

from __future__ import annotations

from typing import Any, Optional

import numpy as np
import pandas as pd

from ..core.base import ValidationError
from ..models.glm import FamilyLike, resolve_family

_SAMPLED_FAMILIES = ("Gaussian", "Binomial", "Poisson")


def glm_data(
    mean_expr: str,
    family: FamilyLike = "gaussian",
    response_name: str = "Y",
    random_state: Optional[int] = None,
    noise_sd: float = 1.0,
    **columns: Any,
) -> pd.DataFrame:
    """Simulate a response whose mean follows a GLM.

    The linear predictor is ``mean_expr`` evaluated over ``columns`` with
    ``DataFrame.eval``. The inverse link of ``family`` maps it to the mean,
    and the response is drawn around that mean.

    Args:
        mean_expr: Linear predictor, e.g. ``"1 + 1.5*X1 + 2*A"``
        family: 'gaussian', 'binomial' or 'poisson' (name, class or instance);
            the family's default link is used unless an instance says otherwise
        response_name: Name of the simulated response column
        random_state: Seed for the response draws
        noise_sd: Standard deviation of gaussian noise
        **columns: Covariate columns, all of the same length

    Returns:
        DataFrame with the response followed by ``columns``

    Example:
        >>> rng = np.random.default_rng(1)
        >>> x1 = rng.normal(size=100)
        >>> a = rng.binomial(1, 0.5, size=100)
        >>> dat = glm_data("1 + 1.5*X1 + 2*A", X1=x1, A=a, random_state=2)
        >>> list(dat.columns)
        ['Y', 'X1', 'A']
    """
    if not columns:
        raise ValidationError("glm_data needs at least one column")
    if response_name in columns:
        raise ValidationError(f"'{response_name}' is both the response and a column")
    if noise_sd < 0:
        raise ValidationError(f"noise_sd must be non-negative, got {noise_sd}")

    try:
        covariates = pd.DataFrame(columns)
    except ValueError as e:
        raise ValidationError(f"Columns must have the same length: {e}") from e

    family = resolve_family(family)
    family_name = type(family).__name__
    if family_name not in _SAMPLED_FAMILIES:
        raise ValidationError(
            f"Cannot simulate from family '{family_name}'. "
            f"Choose one of {[f.lower() for f in _SAMPLED_FAMILIES]}"
        )

    try:
        eta = covariates.eval(mean_expr)
    except Exception as e:
        raise ValidationError(f"Cannot evaluate mean_expr {mean_expr!r}: {e}") from e
    eta = np.broadcast_to(np.asarray(eta, dtype=float), (len(covariates),))
    mu = family.link.inverse(eta)

    rng = np.random.default_rng(random_state)
    if family_name == "Gaussian":
        response = rng.normal(loc=mu, scale=noise_sd)
    elif family_name == "Binomial":
        response = rng.binomial(1, np.clip(mu, 0.0, 1.0))
    else:
        response = rng.poisson(mu)

    data = covariates.copy()
    data.insert(0, response_name, response)
    return data
