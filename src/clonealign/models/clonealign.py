"""
Copy-number-aware negative binomial model for clone assignment.

For a cell n assigned to clone c the expected count of gene g is

    E[y_ng | z_n = c] = s_n * softmax_g(log f(lambda_gc) + log mu_g
                                        + psi_n . w_g)

where the softmax runs over genes, ``s_n`` is a fixed size factor,
``lambda_gc`` the copy number of gene g in clone c, ``mu_g`` a baseline
expression level, and ``psi_n . w_g`` a bilinear cell/gene random effect.
Counts follow a negative binomial with gene-specific concentration ``phi_g``.

The categorical clone label is marginalized inside the model, which is the
ELBO obtained with the optimal per-cell simplex q(z). The posterior clone
probabilities are recovered afterwards with ``clone_posterior``.
"""

from typing import Dict, Optional

import jax.numpy as jnp
from jax import random
from jax.nn import softmax, log_softmax
from jax.scipy.special import logsumexp
import numpyro
import numpyro.distributions as dist
from numpyro.distributions import constraints

from .config import CloneAlignConfig, CopyNumberTransform

# ==============================================================================
# Deterministic building blocks
# ==============================================================================


def copy_number_factor(
    copy_number: jnp.ndarray,
    transform: CopyNumberTransform = CopyNumberTransform.IDENTITY,
    max_copy_number: Optional[float] = None,
    floor: float = 1e-2,
) -> jnp.ndarray:
    """
    Compute the log expression factor log f(lambda) for every gene and clone.

    Parameters
    ----------
    copy_number : jnp.ndarray
        Copy-number matrix of shape (n_genes, n_clones).
    transform : CopyNumberTransform, default=IDENTITY
        The monotonic, non-negative map f.
    max_copy_number : float, optional
        Copy numbers above this value are clamped before applying f.
    floor : float, default=1e-2
        Lower bound on f(lambda), keeps zero-copy genes finite in log space.

    Returns
    -------
    jnp.ndarray
        log f(lambda) with shape (n_genes, n_clones).
    """
    cn = jnp.asarray(copy_number, dtype=jnp.float32)
    if max_copy_number is not None:
        cn = jnp.minimum(cn, max_copy_number)

    transform = CopyNumberTransform(transform)
    if transform == CopyNumberTransform.IDENTITY:
        factor = cn
    elif transform == CopyNumberTransform.SQRT:
        factor = jnp.sqrt(cn)
    else:
        factor = jnp.log1p(cn)

    return jnp.log(jnp.maximum(factor, floor))


# ------------------------------------------------------------------------------


def build_mu(mu_free: jnp.ndarray, gene_groups: jnp.ndarray) -> jnp.ndarray:
    """
    Broadcast group-level baseline expression to genes.

    The anchor group (index 0) is fixed at exactly 1; ``mu_free`` holds the
    remaining ``n_groups - 1`` values.

    Parameters
    ----------
    mu_free : jnp.ndarray
        Free baseline values, shape (n_groups - 1,). May be empty.
    gene_groups : jnp.ndarray
        Integer group index per gene, shape (n_genes,).

    Returns
    -------
    jnp.ndarray
        Per-gene baseline ``mu`` of shape (n_genes,).
    """
    mu_group = jnp.concatenate([jnp.ones((1,), dtype=mu_free.dtype), mu_free])
    return mu_group[gene_groups]


# ------------------------------------------------------------------------------


def _log_expected_expression(
    log_factor: jnp.ndarray,
    mu: jnp.ndarray,
    w: jnp.ndarray,
    psi: jnp.ndarray,
    size_factors: jnp.ndarray,
) -> jnp.ndarray:
    """Log of the expected counts, shape (n_cells, n_genes, n_clones)."""
    # (n_genes, n_clones)
    log_base = log_factor + jnp.log(mu)[:, None]
    # (n_cells, n_genes)
    random_effect = psi @ w.T
    logits = log_base[None, :, :] + random_effect[:, :, None]
    # Normalize over genes so each clone's expected library size is s_n
    log_props = log_softmax(logits, axis=1)
    return jnp.log(size_factors)[:, None, None] + log_props


def expected_expression(
    log_factor: jnp.ndarray,
    mu: jnp.ndarray,
    w: jnp.ndarray,
    psi: jnp.ndarray,
    size_factors: jnp.ndarray,
) -> jnp.ndarray:
    """
    Expected counts of every gene in every cell under every clone.

    Parameters
    ----------
    log_factor : jnp.ndarray
        log f(lambda), shape (n_genes, n_clones).
    mu : jnp.ndarray
        Per-gene baseline expression, shape (n_genes,).
    w : jnp.ndarray
        Gene random-effect loadings, shape (n_genes, n_random_effects).
    psi : jnp.ndarray
        Cell random effects, shape (n_cells, n_random_effects).
    size_factors : jnp.ndarray
        Per-cell size factors, shape (n_cells,).

    Returns
    -------
    jnp.ndarray
        Expected counts with shape (n_cells, n_genes, n_clones). Summing over
        genes returns ``size_factors`` for every clone.
    """
    return jnp.exp(
        _log_expected_expression(log_factor, mu, w, psi, size_factors)
    )


# ------------------------------------------------------------------------------


def clone_log_likelihood(
    counts: jnp.ndarray,
    log_factor: jnp.ndarray,
    mu: jnp.ndarray,
    w: jnp.ndarray,
    psi: jnp.ndarray,
    phi: jnp.ndarray,
    size_factors: jnp.ndarray,
) -> jnp.ndarray:
    """
    Log-likelihood of each cell's counts under each clone.

    Returns
    -------
    jnp.ndarray
        Matrix of shape (n_cells, n_clones) holding
        sum_g log NB(y_ng | mean_ngc, phi_g).
    """
    mean = expected_expression(log_factor, mu, w, psi, size_factors)
    nb = dist.NegativeBinomial2(mean=mean, concentration=phi[None, :, None])
    return nb.log_prob(counts[:, :, None]).sum(axis=1)


# ------------------------------------------------------------------------------


def clone_posterior(
    log_lik: jnp.ndarray, clone_prevalence: jnp.ndarray
) -> jnp.ndarray:
    """Posterior clone probabilities, shape (n_cells, n_clones)."""
    return softmax(log_lik + jnp.log(clone_prevalence)[None, :], axis=-1)


# ==============================================================================
# Model and guide
# ==============================================================================


def clonealign_model(
    counts: jnp.ndarray,
    log_factor: jnp.ndarray,
    size_factors: jnp.ndarray,
    gene_groups: jnp.ndarray,
    n_groups: int,
    config: CloneAlignConfig,
):
    """
    Numpyro model of single-cell counts given clone copy numbers.

    Parameters
    ----------
    counts : jnp.ndarray
        Observed counts, shape (n_cells, n_genes).
    log_factor : jnp.ndarray
        log f(lambda), shape (n_genes, n_clones).
    size_factors : jnp.ndarray
        Fixed per-cell size factors, shape (n_cells,).
    gene_groups : jnp.ndarray
        Reference-group index per gene; group 0 is the anchor.
    n_groups : int
        Number of distinct gene groups.
    config : CloneAlignConfig
        Model configuration (priors and random-effect dimension).
    """
    n_cells, n_genes = counts.shape
    n_clones = log_factor.shape[1]
    n_re = config.n_random_effects
    priors = config.priors

    clone_prevalence = numpyro.sample(
        "clone_prevalence",
        dist.Dirichlet(jnp.full((n_clones,), priors.clone_prevalence)),
    )

    if n_groups > 1:
        mu_free = numpyro.sample(
            "mu_free",
            dist.LogNormal(*priors.mu).expand([n_groups - 1]).to_event(1),
        )
    else:
        mu_free = jnp.zeros((0,))
    mu = numpyro.deterministic("mu", build_mu(mu_free, gene_groups))

    phi = numpyro.sample(
        "phi", dist.LogNormal(*priors.phi).expand([n_genes]).to_event(1)
    )
    w = numpyro.sample(
        "w", dist.Normal(0.0, priors.w).expand([n_genes, n_re]).to_event(2)
    )

    with numpyro.plate("cells", n_cells):
        psi = numpyro.sample(
            "psi", dist.Normal(0.0, priors.psi).expand([n_re]).to_event(1)
        )
        log_lik = clone_log_likelihood(
            counts, log_factor, mu, w, psi, phi, size_factors
        )
        log_joint = log_lik + jnp.log(clone_prevalence)[None, :]
        numpyro.deterministic("clone_probs", softmax(log_joint, axis=-1))
        numpyro.factor("counts", logsumexp(log_joint, axis=-1))


# ------------------------------------------------------------------------------


def clonealign_guide(
    counts: jnp.ndarray,
    log_factor: jnp.ndarray,
    size_factors: jnp.ndarray,
    gene_groups: jnp.ndarray,
    n_groups: int,
    config: CloneAlignConfig,
):
    """
    Variational family for ``clonealign_model``.

    Global parameters (clone prevalence, mu, phi, w) use point-mass guides and
    are therefore MAP estimates. The prevalence is the softmax of an
    unconstrained logit vector; the cell random effect psi has a mean-field
    Normal guide trained with reparameterized gradients.
    """
    n_cells, n_genes = counts.shape
    n_clones = log_factor.shape[1]
    n_re = config.n_random_effects
    guides = config.guides

    # Symmetric in the clones: equal logits stay equal under Adam
    prevalence_logits = numpyro.param(
        "clone_prevalence_logits", jnp.zeros((n_clones,))
    )
    numpyro.sample(
        "clone_prevalence",
        dist.Delta(softmax(prevalence_logits), event_dim=1),
    )

    if n_groups > 1:
        mu_loc = numpyro.param(
            "mu_free_loc",
            jnp.ones((n_groups - 1,)),
            constraint=constraints.positive,
        )
        numpyro.sample("mu_free", dist.Delta(mu_loc, event_dim=1))

    phi_loc = numpyro.param(
        "phi_loc",
        jnp.full((n_genes,), guides.phi_init),
        constraint=constraints.positive,
    )
    numpyro.sample("phi", dist.Delta(phi_loc, event_dim=1))

    w_loc = numpyro.param(
        "w_loc",
        lambda key: guides.w_init_scale * random.normal(key, (n_genes, n_re)),
    )
    numpyro.sample("w", dist.Delta(w_loc, event_dim=2))

    psi_loc = numpyro.param("psi_loc", jnp.zeros((n_cells, n_re)))
    psi_scale = numpyro.param(
        "psi_scale",
        jnp.full((n_cells, n_re), guides.psi_scale_init),
        constraint=constraints.positive,
    )
    with numpyro.plate("cells", n_cells):
        numpyro.sample(
            "psi", dist.Normal(psi_loc, psi_scale).to_event(1)
        )


# ==============================================================================
# Point estimates from variational parameters
# ==============================================================================


def point_estimates(
    params: Dict[str, jnp.ndarray],
    gene_groups: jnp.ndarray,
) -> Dict[str, jnp.ndarray]:
    """
    Convert constrained variational parameters into named point estimates.

    Parameters
    ----------
    params : Dict[str, jnp.ndarray]
        Output of ``svi.get_params``.
    gene_groups : jnp.ndarray
        Reference-group index per gene.

    Returns
    -------
    Dict[str, jnp.ndarray]
        Dictionary with ``mu``, ``mu_group``, ``phi``, ``w``, ``psi``,
        ``psi_scale`` and ``clone_prevalence``. ``psi`` is the variational
        mean.
    """
    mu_free = params.get("mu_free_loc", jnp.zeros((0,)))
    mu_group = jnp.concatenate([jnp.ones((1,), dtype=mu_free.dtype), mu_free])
    return {
        "mu": mu_group[gene_groups],
        "mu_group": mu_group,
        "phi": params["phi_loc"],
        "w": params["w_loc"],
        "psi": params["psi_loc"],
        "psi_scale": params["psi_scale"],
        "clone_prevalence": softmax(params["clone_prevalence_logits"]),
    }
