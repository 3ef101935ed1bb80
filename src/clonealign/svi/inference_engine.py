"""
Inference engine for clonealign.

This module sets up the numpyro SVI instance for the clonealign model and
runs the optimization loop with relative-ELBO convergence checking. The
optimizer state is an explicit ``SVIState`` threaded through a jit-compiled
update; no global session is involved.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
import warnings

import numpy as np
import jax.numpy as jnp
from jax import random, jit
from numpyro.infer import SVI, Trace_ELBO
from numpyro.optim import Adam
from rich.progress import (
    Progress,
    TextColumn,
    BarColumn,
    TaskProgressColumn,
    TimeRemainingColumn,
    MofNCompleteColumn,
)

from ..core import ProcessedInputs
from ..models.clonealign import (
    clonealign_model,
    clonealign_guide,
    copy_number_factor,
)
from ..models.config import CloneAlignConfig

# ==============================================================================
# CloneAlignRunResult class
# ==============================================================================


@dataclass
class CloneAlignRunResult:
    """Raw output of the optimization loop.

    Attributes
    ----------
    params : Dict[str, Any]
        Optimized (constrained) variational parameters.
    elbo : np.ndarray
        ELBO value at each iteration.
    state : Any
        Final SVI state (contains optimizer state).
    converged : bool
        Whether the relative ELBO change fell below ``rel_tol``.
    n_iter : int
        Number of iterations run (equals ``len(elbo)``).
    """

    params: Dict[str, Any]
    elbo: np.ndarray
    state: Any = None
    converged: bool = False
    n_iter: int = 0


# ------------------------------------------------------------------------------
# Helper functions
# ------------------------------------------------------------------------------


def relative_elbo_change(elbo_old: float, elbo_new: float) -> float:
    """Return ``(elbo_new - elbo_old) / |elbo_old|``."""
    return (elbo_new - elbo_old) / abs(elbo_old)


def _has_converged(
    elbo_old: float, elbo_new: float, rel_tol: float
) -> Tuple[bool, Optional[float]]:
    """
    Convergence test applied after every iteration but the first.

    Returns the verdict together with the relative ELBO change, which is
    None when it is undefined (non-finite ELBO or ``elbo_old == 0``).
    """
    if not (np.isfinite(elbo_old) and np.isfinite(elbo_new)):
        return False, None
    if elbo_old == 0:
        return bool(elbo_new == elbo_old), None
    delta = relative_elbo_change(elbo_old, elbo_new)
    return bool(delta < rel_tol), delta


def _progress_display_interval(max_iter: int) -> int:
    """Steps between progress-bar loss updates (about 20 per run)."""
    return max(1, max_iter // 20)


# ------------------------------------------------------------------------------


def _run_until_converged(
    svi: SVI,
    rng_key: random.PRNGKey,
    model_args: Dict[str, Any],
    config: CloneAlignConfig,
) -> CloneAlignRunResult:
    """Run SVI until the relative ELBO change drops below ``rel_tol``.

    Parameters
    ----------
    svi : SVI
        NumPyro SVI instance.
    rng_key : random.PRNGKey
        JAX random key for reproducibility.
    model_args : Dict[str, Any]
        Arguments to pass to the model/guide.
    config : CloneAlignConfig
        Supplies ``rel_tol``, ``max_iter``, ``verbose`` and
        ``stable_update``.

    Returns
    -------
    CloneAlignRunResult
        Parameters, ELBO trace and convergence metadata.
    """
    svi_state = svi.init(rng_key, **model_args)
    elbo_trace = []
    converged = False

    def body_fn(svi_state):
        if config.stable_update:
            return svi.stable_update(svi_state, **model_args)
        return svi.update(svi_state, **model_args)

    jit_body_fn = jit(body_fn)

    progress_ctx = Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        MofNCompleteColumn(),
        TimeRemainingColumn(),
        TextColumn("{task.fields[elbo_info]}"),
        disable=not config.verbose,
    )
    display_interval = _progress_display_interval(config.max_iter)

    with progress_ctx as pbar:
        task = pbar.add_task(
            "clonealign", total=config.max_iter, elbo_info=""
        )

        for step in range(config.max_iter):
            svi_state, loss = jit_body_fn(svi_state)
            elbo = -float(loss)
            elbo_trace.append(elbo)

            delta = None
            if step > 0:
                converged, delta = _has_converged(
                    elbo_trace[-2], elbo, config.rel_tol
                )

            if config.verbose:
                change = "" if delta is None else f", rel. change {delta:.3e}"
                pbar.console.print(
                    f"Iteration {step + 1}\tELBO: {elbo:.6e}{change}"
                )
                if step % display_interval == 0 or converged:
                    pbar.update(
                        task, advance=1, elbo_info=f"ELBO: {elbo:.4e}"
                    )
                else:
                    pbar.update(task, advance=1)

            if converged:
                if config.verbose:
                    pbar.console.print(
                        f"[bold green]ELBO converged at iteration "
                        f"{step + 1}[/bold green]"
                    )
                break

    if not converged:
        warnings.warn(
            f"ELBO did not converge within max_iter={config.max_iter} "
            "iterations; returning the current estimates. Inspect the ELBO "
            "trace or increase max_iter.",
            UserWarning,
        )

    return CloneAlignRunResult(
        params=svi.get_params(svi_state),
        elbo=np.asarray(elbo_trace, dtype=np.float64),
        state=svi_state,
        converged=converged,
        n_iter=len(elbo_trace),
    )


# ==============================================================================
# CloneAlignInferenceEngine class
# ==============================================================================


class CloneAlignInferenceEngine:
    """Handles clonealign inference execution.

    Examples
    --------
    >>> from clonealign.core import InputProcessor
    >>> from clonealign.models.config import CloneAlignConfig
    >>> from clonealign.svi import CloneAlignInferenceEngine
    >>>
    >>> inputs = InputProcessor.process_inputs(counts, copy_number)
    >>> run = CloneAlignInferenceEngine.run_inference(
    ...     inputs, CloneAlignConfig(max_iter=500, verbose=False)
    ... )
    >>> run.converged, run.n_iter
    """

    @staticmethod
    def build_model_args(
        inputs: ProcessedInputs, config: CloneAlignConfig
    ) -> Dict[str, Any]:
        """Assemble the keyword arguments shared by the model and guide."""
        log_factor = copy_number_factor(
            inputs.copy_number,
            transform=config.copy_number_transform,
            max_copy_number=config.max_copy_number,
            floor=config.copy_number_floor,
        )
        return {
            "counts": jnp.asarray(inputs.counts, dtype=jnp.float32),
            "log_factor": log_factor,
            "size_factors": jnp.asarray(inputs.size_factors, dtype=jnp.float32),
            "gene_groups": jnp.asarray(inputs.gene_groups, dtype=jnp.int32),
            "n_groups": inputs.n_groups,
            "config": config,
        }

    # --------------------------------------------------------------------------

    @staticmethod
    def run_inference(
        inputs: ProcessedInputs,
        config: Optional[CloneAlignConfig] = None,
    ) -> CloneAlignRunResult:
        """
        Fit the clonealign model by stochastic variational inference.

        Parameters
        ----------
        inputs : ProcessedInputs
            Aligned expression and copy-number data.
        config : CloneAlignConfig, optional
            Fit configuration. Defaults to ``CloneAlignConfig()``.

        Returns
        -------
        CloneAlignRunResult
            Optimized variational parameters, ELBO trace and convergence
            flag. Reaching ``max_iter`` is not an error: the current
            estimates are returned with ``converged=False``.

        Notes
        -----
        Each iteration takes one Adam step on the negative ELBO and records
        the ELBO. Optimization stops at the first iteration where
        ``(elbo_new - elbo_old) / |elbo_old| < rel_tol``, or after
        ``max_iter`` iterations.
        """
        if config is None:
            config = CloneAlignConfig()

        svi = SVI(
            clonealign_model,
            clonealign_guide,
            Adam(step_size=config.learning_rate),
            loss=Trace_ELBO(num_particles=config.num_particles),
        )
        rng_key = random.PRNGKey(config.seed)
        model_args = CloneAlignInferenceEngine.build_model_args(inputs, config)

        return _run_until_converged(svi, rng_key, model_args, config)
