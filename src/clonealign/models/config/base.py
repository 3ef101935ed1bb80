"""Main clonealign configuration class using Pydantic."""

from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, ConfigDict

from .enums import CopyNumberTransform
from .groups import PriorConfig, GuideConfig

# ==============================================================================
# CloneAlign Configuration Class
# ==============================================================================


class CloneAlignConfig(BaseModel):
    """
    Complete configuration of a clonealign fit.

    Groups the optimizer settings (learning rate, convergence tolerance,
    iteration cap), the modeling choices (copy-number transform, number of
    random-effect dimensions) and the nested prior and guide groups into a
    single immutable, validated object.

    Parameters
    ----------
    learning_rate : float
        Step size of the Adam optimizer.
    rel_tol : float
        Relative ELBO-change threshold. Optimization stops as soon as
        ``(elbo_new - elbo_old) / |elbo_old| < rel_tol``.
    max_iter : int
        Hard cap on the number of optimization iterations.
    verbose : bool
        Whether to display a progress bar and per-iteration ELBO values.
    seed : int
        Random seed used to initialize the variational parameters and draw
        the reparameterized samples.
    n_random_effects : int
        Dimension P of the bilinear cell/gene random effect ``psi_n . w_g``.
    num_particles : int
        Number of Monte Carlo particles used to estimate the ELBO.
    copy_number_transform : CopyNumberTransform
        The function f mapping copy number to expression factor.
    max_copy_number : float, optional
        If given, copy numbers are clamped to this value before applying f.
    copy_number_floor : float
        Lower bound applied to f(copy number) so that genes with zero copies
        keep a finite log-mean.
    stable_update : bool
        Use ``svi.stable_update`` so that non-finite steps are skipped.
    priors : PriorConfig
        Prior hyperparameters.
    guides : GuideConfig
        Initial values of the variational parameters.

    Notes
    -----
    - Configuration objects are immutable and validated automatically on
      creation.
    - Unrecognized parameters are forbidden and will raise validation errors.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Optimization
    learning_rate: float = Field(
        0.1, gt=0, description="Adam step size"
    )
    rel_tol: float = Field(
        1e-6, gt=0, description="Relative ELBO-change convergence threshold"
    )
    max_iter: int = Field(
        200, gt=0, description="Maximum number of optimization iterations"
    )
    verbose: bool = Field(True, description="Report per-iteration progress")
    seed: int = Field(42, description="Random seed")
    num_particles: int = Field(
        1, gt=0, description="Monte Carlo particles per ELBO estimate"
    )
    stable_update: bool = Field(
        True, description="Use numerically stable parameter updates"
    )

    # Model structure
    n_random_effects: int = Field(
        1, gt=0, description="Dimension of the cell/gene random effect"
    )
    copy_number_transform: CopyNumberTransform = Field(
        CopyNumberTransform.IDENTITY,
        description="Map from copy number to expression factor",
    )
    max_copy_number: Optional[float] = Field(
        None, gt=0, description="Clamp copy numbers at this value"
    )
    copy_number_floor: float = Field(
        1e-2, gt=0, description="Lower bound on the expression factor"
    )

    # Parameter groups
    priors: PriorConfig = Field(default_factory=PriorConfig)
    guides: GuideConfig = Field(default_factory=GuideConfig)

    # --------------------------------------------------------------------------
    # Convenience constructors
    # --------------------------------------------------------------------------

    def with_updates(self, **kwargs: Any) -> "CloneAlignConfig":
        """
        Return a validated copy of this config with fields replaced.

        Unlike ``model_copy(update=...)`` the merged values are validated
        again, so invalid overrides raise.
        """
        payload = self.model_dump()
        payload.update(kwargs)
        return CloneAlignConfig(**payload)

    # --------------------------------------------------------------------------
    # Serialization
    # --------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Return a plain (JSON-compatible) dictionary representation."""
        return self.model_dump(mode="json")

    def to_yaml(self) -> str:
        """Serialize the configuration to a YAML string."""
        return yaml.safe_dump(self.to_dict(), sort_keys=False)

    @classmethod
    def from_yaml(cls, yaml_str: str) -> "CloneAlignConfig":
        """Create a configuration from a YAML string."""
        payload = yaml.safe_load(yaml_str) or {}
        return cls(**payload)
