"""
Core input handling for clonealign inference.

This module contains input validation, gene alignment and preprocessing
shared by the fitting and evaluation code.
"""

from .input_processor import InputProcessor, ProcessedInputs
from .preprocessing import preprocess_inputs, PreprocessedInputs

__all__ = [
    "InputProcessor",
    "ProcessedInputs",
    "preprocess_inputs",
    "PreprocessedInputs",
]
