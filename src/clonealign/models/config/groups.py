"""
Parameter group definitions for clonealign configuration using Pydantic for
type safety and validation.

Priors and variational initial values are kept in separate, self-contained
groups so they can be validated independently and nested inside the main
``CloneAlignConfig``. All groups are immutable.
"""

from typing import Tuple
from pydantic import BaseModel, Field, field_validator, ConfigDict

# ==============================================================================
# Prior Configuration Group
# ==============================================================================


class PriorConfig(BaseModel):
    """Prior parameters with automatic validation."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    mu: Tuple[float, float] = Field(
        (0.0, 1.0),
        description="Baseline prior for non-anchor groups (LogNormal)",
    )
    phi: Tuple[float, float] = Field(
        (1.0, 2.0), description="Per-gene dispersion prior (LogNormal)"
    )
    w: float = Field(
        1.0, gt=0, description="Scale of the gene random-effect prior (Normal)"
    )
    psi: float = Field(
        1.0, gt=0, description="Scale of the cell random-effect prior (Normal)"
    )
    clone_prevalence: float = Field(
        1.0,
        gt=0,
        description="Symmetric Dirichlet concentration on clone prevalence",
    )

    # --------------------------------------------------------------------------
    # Validation Methods
    # --------------------------------------------------------------------------

    @field_validator("mu", "phi")
    @classmethod
    def validate_lognormal_params(
        cls, v: Tuple[float, float]
    ) -> Tuple[float, float]:
        """
        Validate LogNormal parameters (location can be zero/negative, scale must
        be positive).
        """
        if len(v) != 2:
            raise ValueError(f"Prior must be a 2-tuple, got {len(v)}")
        if v[1] <= 0:
            raise ValueError(
                f"LogNormal scale parameter must be positive, got {v}"
            )
        return v


# ==============================================================================
# Guide Configuration Group
# ==============================================================================


class GuideConfig(BaseModel):
    """Initial values of the variational parameters."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    phi_init: float = Field(
        1.0, gt=0, description="Initial per-gene dispersion"
    )
    psi_scale_init: float = Field(
        0.1, gt=0, description="Initial scale of the Normal guide on psi"
    )
    w_init_scale: float = Field(
        0.01,
        ge=0,
        description="Standard deviation of the random initial gene loadings",
    )
