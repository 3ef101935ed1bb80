"""
Enums for clonealign model configuration.

Restricting the copy-number transform to a fixed set of named choices keeps
configuration files explicit and lets Pydantic reject unknown values at
construction time.
"""

from enum import Enum

# ==============================================================================
# Enums for model configuration
# ==============================================================================


class CopyNumberTransform(str, Enum):
    """
    Map from a copy-number state to a multiplicative expression factor.

    All transforms are monotonic and non-negative on non-negative input:

        - IDENTITY: f(x) = x (expression proportional to copy number)
        - SQRT: f(x) = sqrt(x) (dampened dosage effect)
        - LOG1P: f(x) = log(1 + x) (strongly saturating dosage effect)
    """

    IDENTITY = "identity"
    SQRT = "sqrt"
    LOG1P = "log1p"
