"""Configuration for GLM plug-in estimation and prognostic score fitting."""

from pydantic import Field, field_validator
from pydantic_settings import SettingsConfigDict

from .base import BaseConfiguration, Environment


class PostcardConfig(BaseConfiguration):
    """Defaults used by ``rctglm`` and the super learner.

    Values are read from ``POSTCARD_*`` environment variables when the object
    is constructed. The object itself is passed explicitly to the estimation
    functions; nothing reads it from a global.
    """

    model_config = SettingsConfigDict(
        env_prefix="POSTCARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Output
    verbose: int = Field(
        default=0,
        description="0 silent, 1 milestones, 2 milestones and per-candidate diagnostics",
    )

    # Cross-validation
    cv_variance_folds: int = Field(
        default=10, description="Folds for out-of-sample variance estimation"
    )
    cv_prog_folds: int = Field(
        default=5, description="Folds for selecting the prognostic model"
    )
    random_state: int | None = Field(
        default=None, description="Seed for fold assignment"
    )

    # Parallel processing
    n_jobs: int = Field(
        default=1, description="Workers for the super learner grid (-1 = all cores)"
    )
    parallel_backend: str = Field(
        default="loky", description="joblib backend for the super learner grid"
    )

    # Numerics
    rate_ratio_tolerance: float = Field(
        default=1e-8,
        description="Absolute size below which a denominator counts as zero",
    )
    min_sample_size: int = Field(
        default=10, description="Minimum number of rows accepted by rctglm"
    )

    @field_validator("verbose")
    @classmethod
    def validate_verbose(cls, v: int) -> int:
        """Validate verbosity is one of 0, 1, 2."""
        if v not in (0, 1, 2):
            raise ValueError("verbose must be 0, 1 or 2")
        return v

    @field_validator("cv_variance_folds", "cv_prog_folds")
    @classmethod
    def validate_folds(cls, v: int) -> int:
        """Validate there are at least two folds."""
        if v < 2:
            raise ValueError("Number of folds must be at least 2")
        return v

    @field_validator("n_jobs")
    @classmethod
    def validate_n_jobs(cls, v: int) -> int:
        """Validate n_jobs follows the joblib convention."""
        if v == 0:
            raise ValueError("n_jobs cannot be 0")
        return v

    @field_validator("rate_ratio_tolerance")
    @classmethod
    def validate_tolerance(cls, v: float) -> float:
        """Validate the tolerance is positive."""
        if v <= 0:
            raise ValueError("rate_ratio_tolerance must be positive")
        return v

    def validate_configuration(self) -> list[str]:
        """Validate postcard specific configuration."""
        issues = super().validate_configuration()

        if self.environment == Environment.PRODUCTION and self.verbose == 2:
            issues.append("Per-candidate diagnostics are noisy in production")

        if self.cv_variance_folds > self.min_sample_size:
            issues.append(
                "cv_variance_folds exceeds min_sample_size; small trials will fail validation"
            )

        return issues
