"""
Configuration system for clonealign.

Uses Pydantic for validation and enums for type safety. All configs are
immutable by default.
"""

from .enums import CopyNumberTransform
from .groups import PriorConfig, GuideConfig
from .base import CloneAlignConfig

__all__ = [
    "CloneAlignConfig",
    "PriorConfig",
    "GuideConfig",
    "CopyNumberTransform",
]
