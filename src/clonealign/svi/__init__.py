"""
Stochastic variational inference for clonealign.

This module runs the clonealign model with numpyro's SVI and packages the
optimized parameters into results objects.
"""

from .inference_engine import CloneAlignInferenceEngine, CloneAlignRunResult
from .results_factory import CloneAlignResultsFactory
from .results import CloneAlignResults

__all__ = [
    "CloneAlignInferenceEngine",
    "CloneAlignRunResult",
    "CloneAlignResultsFactory",
    "CloneAlignResults",
]
