"""
Simplified API for clonealign inference.

This module provides the user-facing entry point with sensible defaults and
flat keyword overrides instead of nested configuration objects.

Examples
--------
>>> import clonealign
>>>
>>> # Arrays or DataFrames: cells x genes counts, genes x clones copy number
>>> results = clonealign.fit(counts, copy_number, max_iter=500)
>>> results.assigned_clones[:5]
>>>
>>> # AnnData carrying the copy number in .varm
>>> results = clonealign.fit(adata, layer="counts", gene_group_key="chr")
>>> results.annotate_anndata(adata)
>>>
>>> # Power users can pass an explicit config object
>>> from clonealign.models.config import CloneAlignConfig
>>> config = CloneAlignConfig(learning_rate=0.05, rel_tol=1e-7)
>>> results = clonealign.fit(counts, copy_number, config=config)
"""

from typing import TYPE_CHECKING, Any, Optional, Sequence, Union

import numpy as np
import pandas as pd
import jax.numpy as jnp

if TYPE_CHECKING:
    from anndata import AnnData

from .core import InputProcessor
from .models.config import CloneAlignConfig
from .svi import (
    CloneAlignInferenceEngine,
    CloneAlignResultsFactory,
    CloneAlignResults,
)

# ==============================================================================
# Main API function
# ==============================================================================


def fit(
    expression: Union[np.ndarray, jnp.ndarray, pd.DataFrame, "AnnData"],
    copy_number: Optional[Union[np.ndarray, jnp.ndarray, pd.DataFrame]] = None,
    *,
    config: Optional[CloneAlignConfig] = None,
    size_factors: Optional[Sequence[float]] = None,
    gene_groups: Optional[Sequence[Any]] = None,
    layer: Optional[str] = None,
    copy_number_key: str = "copy_number",
    gene_group_key: Optional[str] = None,
    cells_axis: int = 0,
    **kwargs: Any,
) -> CloneAlignResults:
    """
    Assign cells to clones from expression counts and clone copy numbers.

    Parameters
    ----------
    expression : array, DataFrame or AnnData
        Raw counts, cells x genes (see ``cells_axis``).
    copy_number : array or DataFrame, optional
        Copy number per gene (rows, aligned with the expression columns) and
        clone (columns). Optional when ``expression`` is an AnnData holding
        it in ``adata.varm[copy_number_key]``.
    config : CloneAlignConfig, optional
        Full configuration. Defaults to ``CloneAlignConfig()``.
    size_factors : sequence of float, optional
        Per-cell size factors. Defaults to total counts per cell.
    gene_groups : sequence, optional
        Reference-group label per gene (e.g. chromosome). The baseline
        expression ``mu`` is shared within a group and fixed at 1 for the
        first gene's group. Defaults to one group per gene.
    layer : str, optional
        AnnData layer holding the counts.
    copy_number_key : str, default="copy_number"
        ``adata.varm`` key of the copy-number matrix.
    gene_group_key : str, optional
        ``adata.var`` column holding the gene groups.
    cells_axis : int, default=0
        Axis of cells in an array/DataFrame count matrix.
    **kwargs
        Flat overrides of ``CloneAlignConfig`` fields, e.g.
        ``learning_rate``, ``rel_tol``, ``max_iter``, ``verbose``, ``seed``.

    Returns
    -------
    CloneAlignResults
        Hard and soft clone assignments, parameter estimates and the ELBO
        trace.

    Raises
    ------
    ValueError
        If the inputs are malformed or gene sets are misaligned, or if a
        configuration override is invalid.
    """
    if config is None:
        config = CloneAlignConfig()
    if kwargs:
        config = config.with_updates(**kwargs)

    inputs = InputProcessor.process_inputs(
        expression,
        copy_number,
        size_factors=size_factors,
        gene_groups=gene_groups,
        layer=layer,
        copy_number_key=copy_number_key,
        gene_group_key=gene_group_key,
        cells_axis=cells_axis,
    )

    run_result = CloneAlignInferenceEngine.run_inference(inputs, config)
    return CloneAlignResultsFactory.create_results(run_result, inputs, config)
