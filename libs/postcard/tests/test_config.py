"""Tests for configuration and logging setup."""

import logging

import pytest
from pydantic import ValidationError as PydanticValidationError

from shared.config import Environment, PostcardConfig
from shared.observability import get_logger, setup_logging


class TestPostcardConfig:
    """Defaults, environment overrides and validation."""

    def test_defaults(self, config):
        assert config.verbose == 0
        assert config.cv_variance_folds == 10
        assert config.cv_prog_folds == 5
        assert config.n_jobs == 1
        assert config.random_state is None

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("POSTCARD_CV_PROG_FOLDS", "3")
        monkeypatch.setenv("POSTCARD_VERBOSE", "2")

        config = PostcardConfig(_env_file=None)

        assert config.cv_prog_folds == 3
        assert config.verbose == 2

    @pytest.mark.parametrize(
        "field, value",
        [("verbose", 3), ("cv_variance_folds", 1), ("n_jobs", 0), ("rate_ratio_tolerance", 0.0)],
    )
    def test_invalid_values(self, field, value):
        with pytest.raises(PydanticValidationError):
            PostcardConfig(_env_file=None, **{field: value})

    def test_validate_configuration(self):
        config = PostcardConfig(
            _env_file=None, environment=Environment.PRODUCTION, verbose=2, cv_variance_folds=20
        )

        issues = config.validate_configuration()

        assert len(issues) == 2

    def test_to_dict(self, config):
        assert config.to_dict()["cv_variance_folds"] == 10


class TestLogging:
    """Logging setup helpers."""

    def test_setup_logging_quiets_joblib(self, config):
        setup_logging(config)

        assert logging.getLogger("joblib").level == logging.WARNING

    def test_get_logger(self):
        assert get_logger("postcard.test").name == "postcard.test"
