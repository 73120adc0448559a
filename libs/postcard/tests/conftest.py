"""Shared test fixtures for postcard.

This module provides simulated trial and historical data with known
marginal effects, reused across the estimator and learner tests.
"""

import numpy as np
import pandas as pd
import pytest

from postcard.data.synthetic import glm_data
from shared.config import PostcardConfig


@pytest.fixture
def random_state():
    """Provide a consistent random state for reproducible tests."""
    return 42


@pytest.fixture
def config():
    """Configuration with library defaults, independent of the environment."""
    return PostcardConfig(_env_file=None)


@pytest.fixture
def gaussian_trial(random_state):
    """Linear trial with a true average treatment effect of 2."""
    rng = np.random.default_rng(random_state)
    n = 400
    x1 = rng.normal(size=n)
    a = rng.binomial(1, 0.5, size=n)
    return glm_data("1 + 1.5*X1 + 2*A", X1=x1, A=a, random_state=random_state + 1)


@pytest.fixture
def poisson_trial(random_state):
    """Count outcome trial with a multiplicative treatment effect."""
    rng = np.random.default_rng(random_state)
    n = 400
    x1 = rng.normal(size=n)
    a = rng.binomial(1, 0.5, size=n)
    return glm_data(
        "0.5 + 0.3*X1 + 0.4*A", family="poisson", X1=x1, A=a, random_state=random_state + 1
    )


@pytest.fixture
def nonlinear_trial_and_history(random_state):
    """Trial and historical data whose outcome depends nonlinearly on W."""
    rng = np.random.default_rng(random_state)

    def simulate(n, exposed_share, seed):
        w = rng.uniform(-2, 2, size=n)
        a = rng.binomial(1, exposed_share, size=n)
        return glm_data(
            "1 + 3*sin(2*W) + W**2 + 1.5*A",
            W=w,
            A=a,
            noise_sd=0.5,
            random_state=seed,
        )

    trial = simulate(200, 0.5, random_state + 1)
    history = simulate(600, 0.0, random_state + 2).drop(columns="A")
    return trial, history


@pytest.fixture
def simple_history(random_state):
    """Small linear historical dataset for learner selection tests."""
    rng = np.random.default_rng(random_state)
    n = 120
    x1 = rng.normal(size=n)
    x2 = rng.normal(size=n)
    y = 1 + 2 * x1 - x2 + rng.normal(scale=0.5, size=n)
    return pd.DataFrame({"Y": y, "X1": x1, "X2": x2})
