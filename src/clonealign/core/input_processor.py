"""
Input processing and validation utilities for clonealign inference.

This module turns the user-facing inputs (arrays, pandas DataFrames or an
AnnData object carrying both matrices) into aligned JAX arrays, and fails
fast whenever expression and copy-number data cannot be matched gene by
gene.
"""

from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, TYPE_CHECKING, Union
import warnings

import numpy as np
import pandas as pd
import jax.numpy as jnp
import scipy.sparse

if TYPE_CHECKING:
    from anndata import AnnData

# ==============================================================================
# ProcessedInputs class
# ==============================================================================


@dataclass
class ProcessedInputs:
    """Aligned inputs of a clonealign fit.

    Attributes
    ----------
    counts : jnp.ndarray
        Expression counts, shape (n_cells, n_genes).
    copy_number : jnp.ndarray
        Copy-number matrix, shape (n_genes, n_clones).
    size_factors : jnp.ndarray
        Per-cell size factors, shape (n_cells,).
    gene_groups : jnp.ndarray
        Integer reference-group index per gene; 0 is the anchor group.
    n_groups : int
        Number of distinct gene groups.
    cell_names, gene_names, clone_names : List[str]
        Labels of the three axes.
    group_names : List[str]
        Label of each gene group, in index order.
    default_size_factors : bool
        Whether the size factors are the cells' total counts (and must be
        recomputed when genes are subset).
    adata : AnnData, optional
        The AnnData the inputs were taken from, if any.
    """

    counts: jnp.ndarray
    copy_number: jnp.ndarray
    size_factors: jnp.ndarray
    gene_groups: jnp.ndarray
    n_groups: int
    cell_names: List[str]
    gene_names: List[str]
    clone_names: List[str]
    group_names: List[str]
    default_size_factors: bool = True
    adata: Optional["AnnData"] = None

    @property
    def n_cells(self) -> int:
        return int(self.counts.shape[0])

    @property
    def n_genes(self) -> int:
        return int(self.counts.shape[1])

    @property
    def n_clones(self) -> int:
        return int(self.copy_number.shape[1])

    # --------------------------------------------------------------------------

    def subset_genes(
        self, gene_mask: np.ndarray, recompute_size_factors: bool = True
    ) -> "ProcessedInputs":
        """Return the inputs restricted to the genes selected by a mask.

        Gene groups are re-indexed so that the first retained gene's group
        becomes the anchor. Default size factors (total counts) are
        recomputed over the retained genes unless
        ``recompute_size_factors=False``.
        """
        gene_mask = np.asarray(gene_mask, dtype=bool)
        if gene_mask.shape != (self.n_genes,):
            raise ValueError(
                f"Gene mask must have shape ({self.n_genes},), "
                f"got {gene_mask.shape}"
            )
        if not gene_mask.any():
            raise ValueError("Gene mask selects no genes")

        old_groups = np.asarray(self.gene_groups)[gene_mask]
        codes, uniques = pd.factorize(old_groups, sort=False)
        counts = self.counts[:, gene_mask]
        size_factors = self.size_factors
        if self.default_size_factors and recompute_size_factors:
            size_factors = jnp.asarray(
                InputProcessor._resolve_size_factors(np.asarray(counts), None),
                dtype=jnp.float32,
            )
        return ProcessedInputs(
            counts=counts,
            copy_number=self.copy_number[gene_mask, :],
            size_factors=size_factors,
            gene_groups=jnp.asarray(codes, dtype=jnp.int32),
            n_groups=len(uniques),
            cell_names=self.cell_names,
            gene_names=[
                g for g, keep in zip(self.gene_names, gene_mask) if keep
            ],
            clone_names=self.clone_names,
            group_names=[self.group_names[i] for i in uniques],
            default_size_factors=self.default_size_factors,
            adata=None,
        )


# ==============================================================================
# InputProcessor class
# ==============================================================================


class InputProcessor:
    """Handles input processing and validation for clonealign inference."""

    @staticmethod
    def process_inputs(
        expression: Union[np.ndarray, jnp.ndarray, pd.DataFrame, "AnnData"],
        copy_number: Optional[
            Union[np.ndarray, jnp.ndarray, pd.DataFrame]
        ] = None,
        size_factors: Optional[Sequence[float]] = None,
        gene_groups: Optional[Sequence[Any]] = None,
        layer: Optional[str] = None,
        copy_number_key: str = "copy_number",
        gene_group_key: Optional[str] = None,
        cells_axis: int = 0,
    ) -> ProcessedInputs:
        """
        Validate and align expression and copy-number inputs.

        Parameters
        ----------
        expression : array, DataFrame or AnnData
            Count matrix. Arrays and DataFrames are cells x genes unless
            ``cells_axis=1``. AnnData objects are always cells x genes.
        copy_number : array or DataFrame, optional
            Copy-number matrix, genes x clones. May be omitted when
            ``expression`` is an AnnData holding it in
            ``adata.varm[copy_number_key]``.
        size_factors : sequence of float, optional
            Per-cell size factors. Defaults to each cell's total counts.
        gene_groups : sequence, optional
            Reference-group label per gene (e.g. chromosome). Defaults to one
            group per gene. The first gene's group is the anchor.
        layer : str, optional
            AnnData layer holding the counts. If None, uses ``.X``.
        copy_number_key : str, default="copy_number"
            Key in ``adata.varm`` holding the copy-number matrix.
        gene_group_key : str, optional
            Column of ``adata.var`` holding the gene groups.
        cells_axis : int, default=0
            Axis for cells in an array/DataFrame count matrix (0=rows,
            1=columns).

        Returns
        -------
        ProcessedInputs
            The aligned inputs.

        Raises
        ------
        ValueError
            If the inputs are malformed or the gene sets are not aligned.
        """
        adata = None
        clone_labels = None

        # Handle AnnData input
        if hasattr(expression, "obs") and hasattr(expression, "var"):
            adata = expression
            count_data = adata.layers[layer] if layer else adata.X
            if scipy.sparse.issparse(count_data):
                count_data = count_data.toarray()
            count_data = np.asarray(count_data)
            cell_names = [str(c) for c in adata.obs_names]
            gene_names = [str(g) for g in adata.var_names]

            if copy_number is None:
                if copy_number_key not in adata.varm:
                    raise ValueError(
                        f"No copy-number matrix given and adata.varm has no "
                        f"'{copy_number_key}' entry"
                    )
                copy_number = adata.varm[copy_number_key]
                # varm is indexed by var_names by construction
                if isinstance(copy_number, pd.DataFrame):
                    clone_labels = [str(c) for c in copy_number.columns]
                    copy_number = copy_number.to_numpy()

            if gene_groups is None and gene_group_key is not None:
                if gene_group_key not in adata.var.columns:
                    raise ValueError(
                        f"Column '{gene_group_key}' not found in adata.var"
                    )
                gene_groups = adata.var[gene_group_key].to_numpy()
        elif isinstance(expression, pd.DataFrame):
            frame = expression if cells_axis == 0 else expression.T
            count_data = frame.to_numpy()
            cell_names = [str(c) for c in frame.index]
            gene_names = [str(g) for g in frame.columns]
        else:
            count_data = np.asarray(expression)
            if count_data.ndim != 2:
                raise ValueError(
                    f"Expression must be a 2D matrix, got {count_data.ndim}D"
                )
            if cells_axis == 1:
                count_data = count_data.T
            cell_names = None
            gene_names = None

        if copy_number is None:
            raise ValueError("A copy-number matrix is required")

        count_data = InputProcessor._validate_counts(count_data)
        n_cells, n_genes = count_data.shape

        # Copy number and gene alignment
        cn_data, cn_genes, cn_clones = InputProcessor._unpack_copy_number(
            copy_number
        )
        clone_labels = cn_clones if cn_clones is not None else clone_labels
        InputProcessor.validate_gene_alignment(
            n_genes, gene_names, cn_data.shape[0], cn_genes
        )
        if gene_names is None:
            gene_names = cn_genes or [f"gene_{i}" for i in range(n_genes)]
        if cell_names is None:
            cell_names = [f"cell_{i}" for i in range(n_cells)]
        n_clones = cn_data.shape[1]
        if clone_labels is None:
            clone_labels = [f"clone_{i}" for i in range(n_clones)]

        size = InputProcessor._resolve_size_factors(count_data, size_factors)
        codes, group_names = InputProcessor._resolve_gene_groups(
            gene_groups, gene_names
        )

        return ProcessedInputs(
            counts=jnp.asarray(count_data, dtype=jnp.float32),
            copy_number=jnp.asarray(cn_data, dtype=jnp.float32),
            size_factors=jnp.asarray(size, dtype=jnp.float32),
            gene_groups=jnp.asarray(codes, dtype=jnp.int32),
            n_groups=len(group_names),
            cell_names=cell_names,
            gene_names=gene_names,
            clone_names=clone_labels,
            group_names=group_names,
            default_size_factors=size_factors is None,
            adata=adata,
        )

    # --------------------------------------------------------------------------
    # Validation helpers
    # --------------------------------------------------------------------------

    @staticmethod
    def validate_gene_alignment(
        n_genes_expression: int,
        expression_genes: Optional[List[str]],
        n_genes_copy_number: int,
        copy_number_genes: Optional[List[str]],
    ) -> None:
        """
        Check that expression columns and copy-number rows are the same genes.

        Raises
        ------
        ValueError
            If the gene counts differ, or both inputs are labelled and the
            labels differ in content or order.
        """
        if n_genes_expression != n_genes_copy_number:
            raise ValueError(
                f"Expression matrix has {n_genes_expression} genes but the "
                f"copy-number matrix has {n_genes_copy_number}; gene sets "
                "must be aligned"
            )
        if expression_genes is None or copy_number_genes is None:
            return
        if list(expression_genes) == list(copy_number_genes):
            return

        missing_cn = sorted(set(expression_genes) - set(copy_number_genes))
        missing_expr = sorted(set(copy_number_genes) - set(expression_genes))
        if missing_cn or missing_expr:
            raise ValueError(
                "Gene labels of the expression and copy-number inputs differ: "
                f"{len(missing_cn)} genes lack copy number "
                f"(e.g. {missing_cn[:5]}), {len(missing_expr)} genes lack "
                f"expression (e.g. {missing_expr[:5]})"
            )
        raise ValueError(
            "Expression and copy-number inputs contain the same genes in a "
            "different order; reorder the copy-number rows to match the "
            "expression columns"
        )

    # --------------------------------------------------------------------------

    @staticmethod
    def _validate_counts(count_data: np.ndarray) -> np.ndarray:
        """Check counts are finite and non-negative; warn on non-integers."""
        count_data = np.asarray(count_data, dtype=np.float64)
        if count_data.ndim != 2:
            raise ValueError(
                f"Expression must be a 2D matrix, got {count_data.ndim}D"
            )
        if not np.all(np.isfinite(count_data)):
            raise ValueError("Expression matrix contains non-finite values")
        if np.any(count_data < 0):
            raise ValueError("Expression matrix contains negative counts")
        if not np.allclose(count_data, np.round(count_data)):
            warnings.warn(
                "Expression matrix contains non-integer values; the negative "
                "binomial model expects raw counts",
                UserWarning,
            )
        return count_data

    # --------------------------------------------------------------------------

    @staticmethod
    def _unpack_copy_number(copy_number: Any):
        """Split a copy-number input into values, gene labels, clone labels."""
        if isinstance(copy_number, pd.DataFrame):
            cn_genes = [str(g) for g in copy_number.index]
            # A default RangeIndex carries no gene identity
            if isinstance(copy_number.index, pd.RangeIndex):
                cn_genes = None
            cn_clones = [str(c) for c in copy_number.columns]
            cn_data = copy_number.to_numpy(dtype=np.float64)
        else:
            cn_genes = None
            cn_clones = None
            cn_data = np.asarray(copy_number, dtype=np.float64)

        if cn_data.ndim != 2:
            raise ValueError(
                f"Copy-number input must be a 2D (genes x clones) matrix, "
                f"got {cn_data.ndim}D"
            )
        if not np.all(np.isfinite(cn_data)):
            raise ValueError("Copy-number matrix contains non-finite values")
        if np.any(cn_data < 0):
            raise ValueError("Copy-number matrix contains negative values")
        if cn_data.shape[1] < 2:
            raise ValueError(
                f"At least 2 clones are required, got {cn_data.shape[1]}"
            )
        return cn_data, cn_genes, cn_clones

    # --------------------------------------------------------------------------

    @staticmethod
    def _resolve_size_factors(
        count_data: np.ndarray, size_factors: Optional[Sequence[float]]
    ) -> np.ndarray:
        """Default size factors to total counts and check positivity."""
        if size_factors is None:
            size = count_data.sum(axis=1)
        else:
            size = np.asarray(size_factors, dtype=np.float64).reshape(-1)
            if size.shape[0] != count_data.shape[0]:
                raise ValueError(
                    f"Got {size.shape[0]} size factors for "
                    f"{count_data.shape[0]} cells"
                )
        if not np.all(np.isfinite(size)) or np.any(size <= 0):
            n_bad = int(np.sum(~(np.isfinite(size) & (size > 0))))
            raise ValueError(
                f"{n_bad} cells have non-positive size factors (e.g. zero "
                "total counts); filter them before fitting"
            )
        return size

    # --------------------------------------------------------------------------

    @staticmethod
    def _resolve_gene_groups(
        gene_groups: Optional[Sequence[Any]], gene_names: List[str]
    ):
        """Factorize gene group labels in order of first appearance."""
        if gene_groups is None:
            return np.arange(len(gene_names)), list(gene_names)

        labels = np.asarray(gene_groups).reshape(-1)
        if labels.shape[0] != len(gene_names):
            raise ValueError(
                f"Got {labels.shape[0]} gene group labels for "
                f"{len(gene_names)} genes"
            )
        codes, uniques = pd.factorize(labels, sort=False)
        if np.any(codes < 0):
            raise ValueError("Gene group labels must not be missing")
        return codes, [str(u) for u in uniques]
