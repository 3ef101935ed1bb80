"""
Results class for clonealign inference.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from ..models.config import CloneAlignConfig

# ------------------------------------------------------------------------------
# Results of a clonealign fit
# ------------------------------------------------------------------------------


@dataclass
class CloneAlignResults:
    """
    Results of a clonealign fit.

    Stores the hard and soft clone assignments of every cell, the point
    estimates of all model parameters, and the ELBO trace used to judge
    convergence. Optionally carries the cell and gene metadata of the AnnData
    object the data came from.

    Attributes
    ----------
    clone_assignment : np.ndarray
        Index of the assigned clone for each cell, shape (n_cells,). Always
        equal to the row-wise arg-max of ``clone_probs``.
    clone_probs : np.ndarray
        Posterior clone probabilities, shape (n_cells, n_clones).
    params : Dict[str, np.ndarray]
        Point estimates keyed by name: ``mu``, ``mu_group``, ``phi``, ``w``,
        ``psi``, ``psi_scale``, ``s``, ``clone_prevalence`` and
        ``clone_probs``.
    elbo : np.ndarray
        ELBO value at each iteration.
    converged : bool
        Whether the relative ELBO change fell below ``rel_tol``.
    n_iter : int
        Number of optimization iterations run.
    config : CloneAlignConfig
        Configuration used for the fit.
    cell_names, gene_names, clone_names : List[str]
        Labels of cells, genes and clones.
    group_names : List[str]
        Labels of the gene reference groups; the first is the anchor.
    obs : Optional[pd.DataFrame]
        Cell-level metadata from adata.obs, if provided
    var : Optional[pd.DataFrame]
        Gene-level metadata from adata.var, if provided
    """

    clone_assignment: np.ndarray
    clone_probs: np.ndarray
    params: Dict[str, np.ndarray]
    elbo: np.ndarray
    converged: bool
    n_iter: int
    config: CloneAlignConfig
    cell_names: List[str]
    gene_names: List[str]
    clone_names: List[str]
    group_names: List[str] = field(default_factory=list)

    # Standard metadata from AnnData object
    obs: Optional[pd.DataFrame] = None
    var: Optional[pd.DataFrame] = None

    # --------------------------------------------------------------------------

    @property
    def n_cells(self) -> int:
        return len(self.cell_names)

    @property
    def n_genes(self) -> int:
        return len(self.gene_names)

    @property
    def n_clones(self) -> int:
        return len(self.clone_names)

    @property
    def assigned_clones(self) -> List[str]:
        """Clone label assigned to each cell."""
        return [self.clone_names[i] for i in self.clone_assignment]

    # --------------------------------------------------------------------------
    # Parameter access
    # --------------------------------------------------------------------------

    def get_param(self, name: str) -> np.ndarray:
        """
        Return the point estimate of a parameter by name.

        Raises
        ------
        KeyError
            If ``name`` is not one of the estimated parameters.
        """
        if name not in self.params:
            raise KeyError(
                f"Unknown parameter '{name}'. Available: "
                f"{sorted(self.params)}"
            )
        return self.params[name]

    def relative_elbo_change(self) -> np.ndarray:
        """Relative ELBO change between consecutive iterations."""
        if len(self.elbo) < 2:
            return np.zeros(0)
        return np.diff(self.elbo) / np.abs(self.elbo[:-1])

    # --------------------------------------------------------------------------
    # Tables
    # --------------------------------------------------------------------------

    def clone_probs_frame(self) -> pd.DataFrame:
        """Posterior clone probabilities as a cells x clones DataFrame."""
        return pd.DataFrame(
            self.clone_probs, index=self.cell_names, columns=self.clone_names
        )

    def to_dataframe(self) -> pd.DataFrame:
        """
        Per-cell assignment table.

        Returns
        -------
        pd.DataFrame
            Indexed by cell with columns ``clone`` (assigned label),
            ``max_prob`` (its posterior probability) and one probability
            column per clone.
        """
        df = pd.DataFrame(
            {
                "clone": self.assigned_clones,
                "max_prob": self.clone_probs.max(axis=1),
            },
            index=self.cell_names,
        )
        return pd.concat([df, self.clone_probs_frame()], axis=1)

    def gene_params_frame(self) -> pd.DataFrame:
        """Gene-level estimates (``mu``, ``phi`` and each column of ``w``)."""
        df = pd.DataFrame(
            {"mu": self.params["mu"], "phi": self.params["phi"]},
            index=self.gene_names,
        )
        w = np.asarray(self.params["w"])
        for k in range(w.shape[1]):
            df[f"w_{k}"] = w[:, k]
        return df

    def cell_params_frame(self) -> pd.DataFrame:
        """Cell-level estimates (size factor ``s`` and columns of ``psi``)."""
        df = pd.DataFrame({"s": self.params["s"]}, index=self.cell_names)
        psi = np.asarray(self.params["psi"])
        for k in range(psi.shape[1]):
            df[f"psi_{k}"] = psi[:, k]
        return df

    # --------------------------------------------------------------------------
    # Thresholded calls
    # --------------------------------------------------------------------------

    def confident_assignments(
        self, threshold: float = 0.95
    ) -> List[Optional[str]]:
        """
        Clone labels for cells whose top posterior probability reaches a
        threshold.

        Parameters
        ----------
        threshold : float, default=0.95
            Minimum posterior probability of the arg-max clone.

        Returns
        -------
        List[Optional[str]]
            The assigned clone label, or None for cells below the threshold.
        """
        if not 0 <= threshold <= 1:
            raise ValueError(
                f"threshold must lie in [0, 1], got {threshold}"
            )
        max_prob = self.clone_probs.max(axis=1)
        return [
            label if p >= threshold else None
            for label, p in zip(self.assigned_clones, max_prob)
        ]

    # --------------------------------------------------------------------------
    # AnnData integration
    # --------------------------------------------------------------------------

    def annotate_anndata(self, adata: Any, key_added: str = "clone") -> None:
        """
        Write assignments and probabilities into an AnnData object in place.

        Sets ``adata.obs[key_added]`` (categorical clone label),
        ``adata.obs[f"{key_added}_max_prob"]`` and
        ``adata.obsm[f"{key_added}_probs"]``.

        Raises
        ------
        ValueError
            If ``adata`` does not have the fitted cells in the same order.
        """
        obs_names = [str(c) for c in adata.obs_names]
        if obs_names != list(self.cell_names):
            raise ValueError(
                "AnnData cells do not match the fitted cells; pass the same "
                "AnnData (or a copy with identical obs_names) used for fitting"
            )
        adata.obs[key_added] = pd.Categorical(
            self.assigned_clones, categories=self.clone_names
        )
        adata.obs[f"{key_added}_max_prob"] = self.clone_probs.max(axis=1)
        adata.obsm[f"{key_added}_probs"] = np.asarray(self.clone_probs)
