"""
Model definitions for clonealign.
"""

from .clonealign import (
    clonealign_model,
    clonealign_guide,
    copy_number_factor,
    build_mu,
    expected_expression,
    clone_log_likelihood,
    clone_posterior,
    point_estimates,
)

__all__ = [
    "clonealign_model",
    "clonealign_guide",
    "copy_number_factor",
    "build_mu",
    "expected_expression",
    "clone_log_likelihood",
    "clone_posterior",
    "point_estimates",
]
