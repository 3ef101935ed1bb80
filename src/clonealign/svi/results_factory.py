"""
Results factory for clonealign inference.

Turns the raw optimization output into a ``CloneAlignResults`` object:
named point estimates, posterior clone probabilities evaluated at the
variational mean of the cell random effects, and the arg-max assignment.
"""

import numpy as np
import jax.numpy as jnp

from ..core import ProcessedInputs
from ..models.clonealign import (
    clone_log_likelihood,
    clone_posterior,
    copy_number_factor,
    point_estimates,
)
from ..models.config import CloneAlignConfig
from .inference_engine import CloneAlignRunResult
from .results import CloneAlignResults


class CloneAlignResultsFactory:
    """Factory for creating clonealign results objects."""

    @staticmethod
    def create_results(
        run_result: CloneAlignRunResult,
        inputs: ProcessedInputs,
        config: CloneAlignConfig,
    ) -> CloneAlignResults:
        """
        Package the output of a fit.

        Parameters
        ----------
        run_result : CloneAlignRunResult
            Output of ``CloneAlignInferenceEngine.run_inference``.
        inputs : ProcessedInputs
            The inputs the model was fitted to.
        config : CloneAlignConfig
            The configuration used for the fit.

        Returns
        -------
        CloneAlignResults
            Assignments, probabilities, parameter estimates and ELBO trace.
        """
        estimates = point_estimates(run_result.params, inputs.gene_groups)

        log_factor = copy_number_factor(
            inputs.copy_number,
            transform=config.copy_number_transform,
            max_copy_number=config.max_copy_number,
            floor=config.copy_number_floor,
        )
        log_lik = clone_log_likelihood(
            jnp.asarray(inputs.counts, dtype=jnp.float32),
            log_factor,
            estimates["mu"],
            estimates["w"],
            estimates["psi"],
            estimates["phi"],
            jnp.asarray(inputs.size_factors, dtype=jnp.float32),
        )
        probs = clone_posterior(log_lik, estimates["clone_prevalence"])

        # Renormalize in float64 so rows sum to one within double precision
        clone_probs = np.asarray(probs, dtype=np.float64)
        clone_probs = clone_probs / clone_probs.sum(axis=1, keepdims=True)
        assignment = np.argmax(clone_probs, axis=1)

        params = {k: np.asarray(v) for k, v in estimates.items()}
        params["s"] = np.asarray(inputs.size_factors)
        params["clone_probs"] = clone_probs

        obs = var = None
        if inputs.adata is not None:
            obs = inputs.adata.obs.copy()
            var = inputs.adata.var.copy()

        return CloneAlignResults(
            clone_assignment=assignment,
            clone_probs=clone_probs,
            params=params,
            elbo=np.asarray(run_result.elbo),
            converged=run_result.converged,
            n_iter=run_result.n_iter,
            config=config,
            cell_names=list(inputs.cell_names),
            gene_names=list(inputs.gene_names),
            clone_names=list(inputs.clone_names),
            group_names=list(inputs.group_names),
            obs=obs,
            var=var,
        )
