"""
Gene and cell filtering ahead of a clonealign fit.

Genes whose copy number does not vary across clones carry no information
about clone identity, and genes or cells with very few counts only add
noise. ``preprocess_inputs`` removes them and clamps extreme copy numbers.
"""

from dataclasses import dataclass
from typing import Union

import numpy as np
import pandas as pd
from scipy.stats import median_abs_deviation
from rich import print as rich_print

from .input_processor import InputProcessor

ArrayLike = Union[np.ndarray, pd.DataFrame]

# ==============================================================================
# PreprocessedInputs class
# ==============================================================================


@dataclass
class PreprocessedInputs:
    """Filtered expression and copy-number inputs.

    Attributes
    ----------
    expression : np.ndarray or pd.DataFrame
        Filtered cells x genes counts (same type as the input).
    copy_number : np.ndarray or pd.DataFrame
        Filtered genes x clones copy numbers (same type as the input).
    cell_mask : np.ndarray
        Boolean mask over the original cells; True where kept.
    gene_mask : np.ndarray
        Boolean mask over the original genes; True where kept.
    """

    expression: ArrayLike
    copy_number: ArrayLike
    cell_mask: np.ndarray
    gene_mask: np.ndarray


# ==============================================================================
# Preprocessing
# ==============================================================================


def preprocess_inputs(
    expression: ArrayLike,
    copy_number: ArrayLike,
    min_counts_per_gene: int = 20,
    min_counts_per_cell: int = 100,
    remove_outlying_genes: bool = True,
    nmads: float = 10.0,
    max_copy_number: float = 6.0,
    remove_genes_same_copy_number: bool = True,
    verbose: bool = False,
) -> PreprocessedInputs:
    """
    Filter cells and genes and clamp copy numbers before fitting.

    Steps are applied in order:

        1. Remove cells with fewer than ``min_counts_per_cell`` total counts.
        2. Remove genes with fewer than ``min_counts_per_gene`` total counts
           (over the retained cells).
        3. Remove genes whose copy number is identical in every clone.
        4. Remove genes whose mean expression lies more than ``nmads``
           median absolute deviations from the median gene mean.
        5. Clamp copy numbers at ``max_copy_number``.

    Parameters
    ----------
    expression : np.ndarray or pd.DataFrame
        Cells x genes count matrix.
    copy_number : np.ndarray or pd.DataFrame
        Genes x clones copy-number matrix, aligned with the expression
        columns.
    min_counts_per_gene : int, default=20
        Minimum total counts for a gene to be kept.
    min_counts_per_cell : int, default=100
        Minimum total counts for a cell to be kept.
    remove_outlying_genes : bool, default=True
        Whether to apply step 4.
    nmads : float, default=10.0
        Number of MADs defining an outlying gene.
    max_copy_number : float, default=6.0
        Copy numbers above this value are set to it.
    remove_genes_same_copy_number : bool, default=True
        Whether to apply step 3.
    verbose : bool, default=False
        Print the number of cells and genes removed at each step.

    Returns
    -------
    PreprocessedInputs
        Filtered inputs and the masks that produced them.

    Raises
    ------
    ValueError
        If the two inputs do not have the same number of genes, if both are
        labelled DataFrames whose gene labels differ in content or order,
        or if filtering removes every cell or every gene.
    """
    expr = np.asarray(expression, dtype=np.float64)
    cn = np.asarray(copy_number, dtype=np.float64)
    if expr.ndim != 2 or cn.ndim != 2:
        raise ValueError("Expression and copy number must be 2D matrices")
    if expr.shape[1] != cn.shape[0]:
        raise ValueError(
            f"Expression matrix has {expr.shape[1]} genes but the "
            f"copy-number matrix has {cn.shape[0]}; gene sets must be aligned"
        )
    # Labelled frames must pair genes by name, not by position
    if (
        isinstance(expression, pd.DataFrame)
        and isinstance(copy_number, pd.DataFrame)
        and not isinstance(copy_number.index, pd.RangeIndex)
    ):
        InputProcessor.validate_gene_alignment(
            expr.shape[1],
            [str(g) for g in expression.columns],
            cn.shape[0],
            [str(g) for g in copy_number.index],
        )

    # 1. Cells with too few counts
    cell_mask = expr.sum(axis=1) >= min_counts_per_cell
    if verbose:
        rich_print(
            f"Removing {int((~cell_mask).sum())} cells with fewer than "
            f"{min_counts_per_cell} counts"
        )
    if not cell_mask.any():
        raise ValueError("No cells pass the min_counts_per_cell filter")

    # 2. Genes with too few counts
    gene_mask = expr[cell_mask].sum(axis=0) >= min_counts_per_gene
    if verbose:
        rich_print(
            f"Removing {int((~gene_mask).sum())} genes with fewer than "
            f"{min_counts_per_gene} counts"
        )

    # 3. Genes with no copy-number variation across clones
    if remove_genes_same_copy_number:
        variable = np.ptp(cn, axis=1) > 0
        if verbose:
            n_flat = int((gene_mask & ~variable).sum())
            rich_print(
                f"Removing {n_flat} genes with the same copy number in "
                "every clone"
            )
        gene_mask &= variable

    # 4. Outlying genes
    if remove_outlying_genes and gene_mask.any():
        gene_means = expr[cell_mask][:, gene_mask].mean(axis=0)
        mad = median_abs_deviation(gene_means)
        if mad > 0:
            outlying = np.abs(gene_means - np.median(gene_means)) > nmads * mad
            kept_idx = np.flatnonzero(gene_mask)
            gene_mask[kept_idx[outlying]] = False
            if verbose:
                rich_print(
                    f"Removing {int(outlying.sum())} genes with outlying "
                    "mean expression"
                )

    if not gene_mask.any():
        raise ValueError("No genes remain after preprocessing")

    # 5. Clamp copy numbers
    cn_clamped = np.minimum(cn, max_copy_number)

    if isinstance(expression, pd.DataFrame):
        expr_out = expression.loc[cell_mask, gene_mask]
    else:
        expr_out = expr[cell_mask][:, gene_mask]

    if isinstance(copy_number, pd.DataFrame):
        cn_out = pd.DataFrame(
            cn_clamped[gene_mask],
            index=copy_number.index[gene_mask],
            columns=copy_number.columns,
        )
    else:
        cn_out = cn_clamped[gene_mask]

    if verbose:
        rich_print(
            f"[bold green]Kept {int(cell_mask.sum())} cells and "
            f"{int(gene_mask.sum())} genes[/bold green]"
        )

    return PreprocessedInputs(
        expression=expr_out,
        copy_number=cn_out,
        cell_mask=cell_mask,
        gene_mask=gene_mask,
    )
