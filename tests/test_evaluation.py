"""
Tests for assignment MSE, permutation nulls and held-out evaluation.
"""

import pytest
import numpy as np
import pandas as pd

from clonealign import evaluate_fit, FitEvaluation
from clonealign.evaluation import (
    assignment_mse,
    permutation_null,
    _empirical_p_value,
)
from clonealign.models import copy_number_factor


@pytest.fixture(scope="module")
def log_factor(synthetic_data):
    _, copy_number, _ = synthetic_data
    return np.asarray(copy_number_factor(copy_number))


def test_true_assignment_beats_shuffled(synthetic_data, log_factor):
    counts, _, clones = synthetic_data
    true_mse = assignment_mse(counts, log_factor, clones)
    wrong_mse = assignment_mse(counts, log_factor, (clones + 1) % 3)

    assert true_mse >= 0
    assert true_mse < wrong_mse


def test_permutation_null(synthetic_data, log_factor):
    counts, _, clones = synthetic_data
    null = permutation_null(counts, log_factor, clones, n_permutations=10)
    again = permutation_null(counts, log_factor, clones, n_permutations=10)

    assert null.shape == (10,)
    np.testing.assert_array_equal(null, again)
    assert assignment_mse(counts, log_factor, clones) < null.min()

    with pytest.raises(ValueError):
        permutation_null(counts, log_factor, clones, n_permutations=0)


def test_empirical_p_value():
    null = np.array([1.0, 2.0, 3.0, 4.0])
    assert _empirical_p_value(0.5, null) == pytest.approx(1 / 5)
    assert _empirical_p_value(2.5, null) == pytest.approx(3 / 5)
    assert _empirical_p_value(10.0, null) == pytest.approx(1.0)


def test_evaluate_fit(synthetic_data, fitted_results):
    counts, copy_number, _ = synthetic_data
    evaluation = evaluate_fit(
        counts,
        copy_number,
        results=fitted_results,
        config=fitted_results.config.with_updates(max_iter=30),
        prop_holdout=0.3,
        n_splits=2,
        n_permutations=5,
    )

    assert isinstance(evaluation, FitEvaluation)
    assert evaluation.null_mse.shape == (5,)
    assert 0 < evaluation.p_value <= 1
    assert evaluation.mse < evaluation.null_mse.mean()

    summary = evaluation.summary
    assert isinstance(summary, pd.DataFrame)
    assert len(summary) == 2
    assert list(summary.columns) == [
        "split",
        "n_train_genes",
        "n_heldout_genes",
        "heldout_mse",
        "null_mse_mean",
        "null_mse_sd",
        "p_value",
        "assignment_agreement",
    ]
    assert (summary["n_heldout_genes"] == 12).all()
    assert (summary["n_train_genes"] == copy_number.shape[0] - 12).all()
    assert summary["assignment_agreement"].between(0, 1).all()


@pytest.mark.parametrize("prop_holdout", [0.0, 1.0, -0.5, 0.001])
def test_evaluate_fit_invalid_holdout(synthetic_data, prop_holdout):
    counts, copy_number, _ = synthetic_data
    with pytest.raises(ValueError, match="prop_holdout"):
        evaluate_fit(counts, copy_number, prop_holdout=prop_holdout)


def test_evaluate_fit_shape_mismatch(synthetic_data, fitted_results):
    counts, copy_number, _ = synthetic_data
    with pytest.raises(ValueError, match="different shape"):
        evaluate_fit(
            counts[:10], copy_number, results=fitted_results, n_splits=1
        )
