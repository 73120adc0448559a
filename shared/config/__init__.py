"""Configuration management for postcard."""

from .base import BaseConfiguration, Environment
from .postcard_config import PostcardConfig

__all__ = [
    "BaseConfiguration",
    "Environment",
    "PostcardConfig",
]
