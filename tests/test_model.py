"""
Tests for the clonealign model building blocks, model and guide.
"""

import pytest
import numpy as np
import jax.numpy as jnp
from numpyro import handlers

from clonealign.models import (
    copy_number_factor,
    build_mu,
    expected_expression,
    clone_log_likelihood,
    clone_posterior,
    clonealign_model,
    clonealign_guide,
    point_estimates,
)
from clonealign.models.config import CloneAlignConfig, CopyNumberTransform
from clonealign.svi import CloneAlignInferenceEngine
from clonealign.core import InputProcessor


# ------------------------------------------------------------------------------
# Copy-number factor
# ------------------------------------------------------------------------------


@pytest.mark.parametrize(
    "transform,fn",
    [
        (CopyNumberTransform.IDENTITY, lambda x: x),
        (CopyNumberTransform.SQRT, np.sqrt),
        (CopyNumberTransform.LOG1P, np.log1p),
    ],
)
def test_copy_number_factor_transforms(transform, fn):
    cn = np.array([[1.0, 2.0], [3.0, 4.0]])
    log_factor = copy_number_factor(cn, transform=transform)

    np.testing.assert_allclose(
        np.asarray(log_factor), np.log(fn(cn)), rtol=1e-5, atol=1e-6
    )


def test_copy_number_factor_accepts_string():
    cn = np.array([[4.0, 9.0]])
    log_factor = copy_number_factor(cn, transform="sqrt")
    np.testing.assert_allclose(np.asarray(log_factor), np.log([[2.0, 3.0]]))


def test_copy_number_factor_floor_and_clamp():
    cn = np.array([[0.0, 10.0]])
    log_factor = copy_number_factor(cn, max_copy_number=6.0, floor=0.05)

    assert np.all(np.isfinite(np.asarray(log_factor)))
    np.testing.assert_allclose(
        np.asarray(log_factor), np.log([[0.05, 6.0]]), rtol=1e-6
    )


# ------------------------------------------------------------------------------
# Expected expression
# ------------------------------------------------------------------------------


def test_build_mu_anchor():
    gene_groups = jnp.array([0, 1, 0, 2])
    mu = build_mu(jnp.array([2.5, 0.5]), gene_groups)

    np.testing.assert_allclose(np.asarray(mu), [1.0, 2.5, 1.0, 0.5])


def test_build_mu_single_group():
    mu = build_mu(jnp.zeros((0,)), jnp.zeros(3, dtype=jnp.int32))
    np.testing.assert_allclose(np.asarray(mu), np.ones(3))


def test_expected_expression_sums_to_size_factor(rng_key):
    n_cells, n_genes, n_clones, n_re = 4, 6, 3, 2
    rng = np.random.default_rng(1)
    cn = rng.integers(1, 5, size=(n_genes, n_clones)).astype(float)
    log_factor = copy_number_factor(cn)
    mu = jnp.asarray(rng.uniform(0.5, 2.0, size=n_genes))
    w = jnp.asarray(rng.normal(size=(n_genes, n_re)))
    psi = jnp.asarray(rng.normal(size=(n_cells, n_re)))
    size = jnp.array([100.0, 250.0, 1000.0, 50.0])

    mean = expected_expression(log_factor, mu, w, psi, size)

    assert mean.shape == (n_cells, n_genes, n_clones)
    np.testing.assert_allclose(
        np.asarray(mean.sum(axis=1)),
        np.repeat(np.asarray(size)[:, None], n_clones, axis=1),
        rtol=1e-4,
    )


def test_expected_expression_tracks_copy_number():
    cn = np.array([[1.0, 2.0], [2.0, 2.0], [2.0, 1.0]])
    log_factor = copy_number_factor(cn)
    mean = expected_expression(
        log_factor,
        jnp.ones(3),
        jnp.zeros((3, 1)),
        jnp.zeros((1, 1)),
        jnp.array([10.0]),
    )

    # Clone 1 doubles gene 0 relative to clone 0
    assert mean[0, 0, 1] > mean[0, 0, 0]
    assert mean[0, 2, 0] > mean[0, 2, 1]


# ------------------------------------------------------------------------------
# Likelihood and posterior
# ------------------------------------------------------------------------------


def test_true_clone_has_highest_likelihood(synthetic_data):
    counts, copy_number, clones = synthetic_data
    n_genes = copy_number.shape[0]
    log_lik = clone_log_likelihood(
        jnp.asarray(counts, dtype=jnp.float32),
        copy_number_factor(copy_number),
        jnp.ones(n_genes),
        jnp.zeros((n_genes, 1)),
        jnp.zeros((counts.shape[0], 1)),
        jnp.full((n_genes,), 10.0),
        jnp.asarray(counts.sum(axis=1), dtype=jnp.float32),
    )

    assert log_lik.shape == (counts.shape[0], copy_number.shape[1])
    np.testing.assert_array_equal(
        np.argmax(np.asarray(log_lik), axis=1), clones
    )


def test_clone_posterior_normalized():
    log_lik = jnp.array([[-10.0, -12.0, -30.0], [-5.0, -5.0, -5.0]])
    probs = clone_posterior(log_lik, jnp.array([0.5, 0.25, 0.25]))

    np.testing.assert_allclose(np.asarray(probs.sum(axis=1)), 1.0, rtol=1e-6)
    assert np.all(np.asarray(probs) >= 0)
    np.testing.assert_allclose(
        np.asarray(probs[1]), [0.5, 0.25, 0.25], rtol=1e-5
    )


# ------------------------------------------------------------------------------
# Model and guide traces
# ------------------------------------------------------------------------------


@pytest.fixture
def model_args(synthetic_data):
    counts, copy_number, _ = synthetic_data
    gene_groups = np.repeat(["a", "b", "c"], 13)
    inputs = InputProcessor.process_inputs(
        counts, copy_number, gene_groups=gene_groups
    )
    config = CloneAlignConfig(n_random_effects=2, verbose=False)
    return CloneAlignInferenceEngine.build_model_args(inputs, config)


def test_guide_sites(model_args, rng_key):
    tr = handlers.trace(handlers.seed(clonealign_guide, rng_key)).get_trace(
        **model_args
    )
    n_cells, n_genes = model_args["counts"].shape

    assert tr["clone_prevalence"]["value"].shape == (3,)
    assert tr["mu_free"]["value"].shape == (2,)
    assert tr["phi"]["value"].shape == (n_genes,)
    assert tr["w"]["value"].shape == (n_genes, 2)
    assert tr["psi"]["value"].shape == (n_cells, 2)
    np.testing.assert_allclose(
        float(tr["clone_prevalence"]["value"].sum()), 1.0, rtol=1e-6
    )


def test_model_sites(model_args, rng_key):
    tr = handlers.trace(handlers.seed(clonealign_model, rng_key)).get_trace(
        **model_args
    )
    n_cells, n_genes = model_args["counts"].shape

    mu = np.asarray(tr["mu"]["value"])
    assert mu.shape == (n_genes,)
    # First group is the anchor
    np.testing.assert_allclose(mu[:13], 1.0)

    probs = np.asarray(tr["clone_probs"]["value"])
    assert probs.shape == (n_cells, 3)
    np.testing.assert_allclose(probs.sum(axis=1), 1.0, rtol=1e-5)
    log_marginal = np.asarray(tr["counts"]["fn"].log_factor)
    assert log_marginal.shape == (n_cells,)
    assert np.all(np.isfinite(log_marginal))


def test_model_without_free_groups(synthetic_data, rng_key):
    counts, copy_number, _ = synthetic_data
    inputs = InputProcessor.process_inputs(
        counts, copy_number, gene_groups=np.zeros(copy_number.shape[0])
    )
    args = CloneAlignInferenceEngine.build_model_args(
        inputs, CloneAlignConfig(verbose=False)
    )
    tr = handlers.trace(handlers.seed(clonealign_guide, rng_key)).get_trace(
        **args
    )

    assert "mu_free" not in tr
    assert "mu_free_loc" not in tr


def test_point_estimates_anchor():
    params = {
        "mu_free_loc": jnp.array([2.0]),
        "phi_loc": jnp.ones(3),
        "w_loc": jnp.zeros((3, 1)),
        "psi_loc": jnp.zeros((2, 1)),
        "psi_scale": jnp.ones((2, 1)),
        "clone_prevalence_logits": jnp.array([0.0, jnp.log(3.0)]),
    }
    estimates = point_estimates(params, jnp.array([0, 1, 1]))

    np.testing.assert_allclose(np.asarray(estimates["mu"]), [1.0, 2.0, 2.0])
    np.testing.assert_allclose(np.asarray(estimates["mu_group"]), [1.0, 2.0])
    np.testing.assert_allclose(
        np.asarray(estimates["clone_prevalence"]), [0.25, 0.75], rtol=1e-6
    )
