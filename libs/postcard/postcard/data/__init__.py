"""Data simulation utilities."""

from .synthetic import glm_data

__all__ = ["glm_data"]
