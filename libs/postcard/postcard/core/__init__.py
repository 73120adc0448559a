"""Core types: exceptions, result records and verbosity helpers."""

from .base import (
    CounterfactualPrediction,
    EmptyLearnerSet,
    EstimationError,
    ExposureColumnNotInModel,
    IncompatibleData,
    NonBinaryExposure,
    NumericalWarning,
    PostcardError,
    PrognosticInfo,
    RctGlmResult,
    ResponseNotFound,
    UnsupportedExpression,
    ValidationError,
    est,
    estimand,
    prog,
)

__all__ = [
    "CounterfactualPrediction",
    "EmptyLearnerSet",
    "EstimationError",
    "ExposureColumnNotInModel",
    "IncompatibleData",
    "NonBinaryExposure",
    "NumericalWarning",
    "PostcardError",
    "PrognosticInfo",
    "RctGlmResult",
    "ResponseNotFound",
    "UnsupportedExpression",
    "ValidationError",
    "est",
    "estimand",
    "prog",
]
