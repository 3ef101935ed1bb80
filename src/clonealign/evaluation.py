"""
Held-out evaluation of clonealign fits.

A fit is judged by how well the copy number of each cell's assigned clone
tracks its expression. For every gene, log-normalized expression and the
log expression factor log f(lambda) of the assigned clone are centred over
cells, and the mean squared difference between the two is the assignment
MSE. Comparing this MSE against the one obtained after randomly permuting
the clone labels tells whether the assignment carries signal; refitting on
a random subset of genes and scoring the remaining ones checks that the
signal generalizes.
"""

from dataclasses import dataclass
from typing import Any, Optional, Sequence

import numpy as np
import pandas as pd
from rich import print as rich_print

from .core import InputProcessor, ProcessedInputs
from .models.clonealign import copy_number_factor
from .models.config import CloneAlignConfig
from .svi import (
    CloneAlignInferenceEngine,
    CloneAlignResultsFactory,
    CloneAlignResults,
)

# ==============================================================================
# FitEvaluation class
# ==============================================================================


@dataclass
class FitEvaluation:
    """Summary of a held-out evaluation.

    Attributes
    ----------
    mse : float
        Assignment MSE of the full fit over all genes.
    null_mse : np.ndarray
        Assignment MSE of the full fit after each label permutation.
    summary : pd.DataFrame
        One row per held-out split with columns ``split``, ``n_train_genes``,
        ``n_heldout_genes``, ``heldout_mse``, ``null_mse_mean``,
        ``null_mse_sd``, ``p_value`` and ``assignment_agreement``.
    """

    mse: float
    null_mse: np.ndarray
    summary: pd.DataFrame

    @property
    def p_value(self) -> float:
        """Empirical p-value of the full-fit MSE against its null."""
        return _empirical_p_value(self.mse, self.null_mse)


# ------------------------------------------------------------------------------
# Helper functions
# ------------------------------------------------------------------------------


def _empirical_p_value(observed: float, null: np.ndarray) -> float:
    """Fraction of null draws at least as good (low) as the observed MSE."""
    null = np.asarray(null)
    return float((1 + np.sum(null <= observed)) / (1 + null.size))


def _centred(x: np.ndarray) -> np.ndarray:
    return x - x.mean(axis=0, keepdims=True)


# ==============================================================================
# Assignment MSE
# ==============================================================================


def assignment_mse(
    counts: np.ndarray,
    log_factor: np.ndarray,
    assignment: np.ndarray,
    size_factors: Optional[np.ndarray] = None,
) -> float:
    """
    Mean squared error between expression and assigned copy-number profile.

    Parameters
    ----------
    counts : np.ndarray
        Counts, shape (n_cells, n_genes).
    log_factor : np.ndarray
        log f(lambda), shape (n_genes, n_clones).
    assignment : np.ndarray
        Clone index of each cell, shape (n_cells,).
    size_factors : np.ndarray, optional
        Per-cell size factors. Defaults to total counts.

    Returns
    -------
    float
        Mean over cells and genes of the squared difference between the
        per-gene centred ``log1p`` normalized expression and the per-gene
        centred ``log_factor`` of each cell's assigned clone.
    """
    counts = np.asarray(counts, dtype=np.float64)
    log_factor = np.asarray(log_factor, dtype=np.float64)
    assignment = np.asarray(assignment)
    if size_factors is None:
        size_factors = counts.sum(axis=1)
    size_factors = np.asarray(size_factors, dtype=np.float64)

    scale = np.median(size_factors)
    log_expr = np.log1p(counts / size_factors[:, None] * scale)
    predicted = log_factor[:, assignment].T
    return float(np.mean((_centred(log_expr) - _centred(predicted)) ** 2))


# ------------------------------------------------------------------------------


def permutation_null(
    counts: np.ndarray,
    log_factor: np.ndarray,
    assignment: np.ndarray,
    size_factors: Optional[np.ndarray] = None,
    n_permutations: int = 20,
    seed: int = 0,
) -> np.ndarray:
    """
    Assignment MSE under random permutations of the clone labels.

    Returns
    -------
    np.ndarray
        One MSE per permutation, shape (n_permutations,).
    """
    if n_permutations < 1:
        raise ValueError(
            f"n_permutations must be positive, got {n_permutations}"
        )
    rng = np.random.default_rng(seed)
    assignment = np.asarray(assignment)
    return np.array(
        [
            assignment_mse(
                counts, log_factor, rng.permutation(assignment), size_factors
            )
            for _ in range(n_permutations)
        ]
    )


# ==============================================================================
# Held-out evaluation
# ==============================================================================


def _fit_inputs(
    inputs: ProcessedInputs, config: CloneAlignConfig
) -> CloneAlignResults:
    run_result = CloneAlignInferenceEngine.run_inference(inputs, config)
    return CloneAlignResultsFactory.create_results(run_result, inputs, config)


def _log_factor(inputs: ProcessedInputs, config: CloneAlignConfig):
    return np.asarray(
        copy_number_factor(
            inputs.copy_number,
            transform=config.copy_number_transform,
            max_copy_number=config.max_copy_number,
            floor=config.copy_number_floor,
        )
    )


def evaluate_fit(
    expression: Any,
    copy_number: Any = None,
    results: Optional[CloneAlignResults] = None,
    config: Optional[CloneAlignConfig] = None,
    prop_holdout: float = 0.2,
    n_splits: int = 2,
    n_permutations: int = 20,
    seed: int = 0,
    size_factors: Optional[Sequence[float]] = None,
    gene_groups: Optional[Sequence[Any]] = None,
    **input_kwargs: Any,
) -> FitEvaluation:
    """
    Evaluate clone assignments on held-out genes.

    For each of ``n_splits`` splits, a random ``prop_holdout`` fraction of
    the genes is held out, the model is refitted on the remaining genes, and
    the refitted assignment is scored on the held-out genes against a
    label-permutation null. Agreement between the refitted assignment and
    the full-data assignment is reported as well.

    Parameters
    ----------
    expression, copy_number
        Inputs as accepted by ``clonealign.fit``.
    results : CloneAlignResults, optional
        A fit on the full inputs. Computed with ``config`` when omitted.
    config : CloneAlignConfig, optional
        Configuration used for every fit. Defaults to
        ``results.config`` or ``CloneAlignConfig()``.
    prop_holdout : float, default=0.2
        Fraction of genes held out in each split.
    n_splits : int, default=2
        Number of random held-out splits.
    n_permutations : int, default=20
        Number of label permutations for each null distribution.
    seed : int, default=0
        Seed of the gene splits and permutations.
    size_factors, gene_groups, **input_kwargs
        Passed to ``InputProcessor.process_inputs``.

    Returns
    -------
    FitEvaluation
        Full-fit MSE, its permutation null and the per-split summary table.

    Raises
    ------
    ValueError
        If ``prop_holdout`` leaves no genes on either side of the split, or
        ``results`` does not match the inputs.
    """
    if not 0 < prop_holdout < 1:
        raise ValueError(
            f"prop_holdout must lie strictly between 0 and 1, got "
            f"{prop_holdout}"
        )
    if n_splits < 1:
        raise ValueError(f"n_splits must be positive, got {n_splits}")

    if config is None:
        config = results.config if results is not None else CloneAlignConfig()

    inputs = InputProcessor.process_inputs(
        expression,
        copy_number,
        size_factors=size_factors,
        gene_groups=gene_groups,
        **input_kwargs,
    )
    n_heldout = int(round(prop_holdout * inputs.n_genes))
    if n_heldout < 1 or n_heldout >= inputs.n_genes:
        raise ValueError(
            f"prop_holdout={prop_holdout} holds out {n_heldout} of "
            f"{inputs.n_genes} genes; at least one gene must be on each side"
        )

    if results is None:
        results = _fit_inputs(inputs, config)
    elif results.n_cells != inputs.n_cells or results.n_genes != inputs.n_genes:
        raise ValueError(
            "results were fitted to inputs of a different shape: "
            f"{results.n_cells} x {results.n_genes} vs "
            f"{inputs.n_cells} x {inputs.n_genes}"
        )

    counts = np.asarray(inputs.counts)
    size = np.asarray(inputs.size_factors)
    log_factor = _log_factor(inputs, config)

    mse = assignment_mse(counts, log_factor, results.clone_assignment, size)
    null_mse = permutation_null(
        counts,
        log_factor,
        results.clone_assignment,
        size,
        n_permutations=n_permutations,
        seed=seed,
    )

    rng = np.random.default_rng(seed)
    split_config = config.with_updates(verbose=False)
    rows = []
    for split in range(n_splits):
        heldout = np.zeros(inputs.n_genes, dtype=bool)
        heldout_idx = rng.choice(inputs.n_genes, size=n_heldout, replace=False)
        heldout[heldout_idx] = True

        train_inputs = inputs.subset_genes(~heldout)
        test_inputs = inputs.subset_genes(heldout, recompute_size_factors=False)
        train_results = _fit_inputs(train_inputs, split_config)

        test_counts = np.asarray(test_inputs.counts)
        test_size = np.asarray(test_inputs.size_factors)
        test_log_factor = _log_factor(test_inputs, config)
        heldout_mse = assignment_mse(
            test_counts,
            test_log_factor,
            train_results.clone_assignment,
            test_size,
        )
        split_null = permutation_null(
            test_counts,
            test_log_factor,
            train_results.clone_assignment,
            test_size,
            n_permutations=n_permutations,
            seed=seed + split + 1,
        )
        agreement = float(
            np.mean(train_results.clone_assignment == results.clone_assignment)
        )
        rows.append(
            {
                "split": split,
                "n_train_genes": train_inputs.n_genes,
                "n_heldout_genes": test_inputs.n_genes,
                "heldout_mse": heldout_mse,
                "null_mse_mean": float(np.mean(split_null)),
                "null_mse_sd": float(np.std(split_null)),
                "p_value": _empirical_p_value(heldout_mse, split_null),
                "assignment_agreement": agreement,
            }
        )
        if config.verbose:
            rich_print(
                f"Split {split + 1}/{n_splits}: held-out MSE "
                f"{heldout_mse:.4f} (null {np.mean(split_null):.4f}), "
                f"agreement {agreement:.2%}"
            )

    return FitEvaluation(
        mse=mse, null_mse=null_mse, summary=pd.DataFrame(rows)
    )
