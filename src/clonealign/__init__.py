"""
clonealign: assign single-cell expression profiles to copy-number clones

Fits a copy-number-aware negative binomial model of single-cell RNA-seq
counts by stochastic variational inference and returns, for every cell, the
posterior probability of originating from each clone.
"""

# Suppress known warnings from dependencies BEFORE any imports
import warnings

# anndata emits FutureWarnings about deprecated __version__ lookups
warnings.filterwarnings(
    "ignore",
    message=".*__version__ is deprecated.*",
    category=FutureWarning,
)

from .api import fit
from .models.config import (
    CloneAlignConfig,
    PriorConfig,
    GuideConfig,
    CopyNumberTransform,
)
from .core import InputProcessor, preprocess_inputs
from .svi import CloneAlignResults
from .evaluation import evaluate_fit, FitEvaluation

__version__ = "0.1.0"

__all__ = [
    "fit",
    "CloneAlignConfig",
    "PriorConfig",
    "GuideConfig",
    "CopyNumberTransform",
    "InputProcessor",
    "preprocess_inputs",
    "CloneAlignResults",
    "evaluate_fit",
    "FitEvaluation",
]
