"""
Shared test fixtures and configuration for clonealign tests.
"""

import pytest
import numpy as np
import os

# Synthetic dataset dimensions
N_CELLS_PER_CLONE = 20
N_CLONES = 3
N_GENES = 39


def pytest_addoption(parser):
    parser.addoption(
        "--device",
        default="cpu",
        choices=["cpu", "gpu"],
        help="Device to run tests on: cpu or gpu",
    )


def pytest_configure(config):
    """Configure JAX device before any imports happen."""
    device = config.getoption("--device")
    if device == "cpu":
        os.environ["JAX_PLATFORM_NAME"] = "cpu"
    else:
        # Remove the environment variable to allow JAX to use GPU
        if "JAX_PLATFORM_NAME" in os.environ:
            del os.environ["JAX_PLATFORM_NAME"]


@pytest.fixture(scope="session")
def device_type(request):
    return request.config.getoption("--device")


@pytest.fixture(scope="session")
def rng_key():
    """Provide a consistent random key for tests."""
    # Import JAX here to ensure environment is configured first
    from jax import random

    return random.PRNGKey(42)


# ------------------------------------------------------------------------------
# Synthetic data
# ------------------------------------------------------------------------------


def simulate_clones(seed=42, phi=10.0):
    """
    Simulate counts from three clones with disjoint copy-number changes.

    All clones are diploid except for one block of 13 genes each: clone 0
    gains (4 copies) on genes 0-12, clone 1 loses (1 copy) on genes 13-25
    and clone 2 gains (3 copies) on genes 26-38.
    """
    rng = np.random.default_rng(seed)

    copy_number = np.full((N_GENES, N_CLONES), 2.0)
    copy_number[0:13, 0] = 4.0
    copy_number[13:26, 1] = 1.0
    copy_number[26:39, 2] = 3.0

    clones = np.repeat(np.arange(N_CLONES), N_CELLS_PER_CLONE)
    size_factors = rng.integers(1500, 3000, size=clones.size).astype(float)

    profile = copy_number[:, clones].T
    mean = size_factors[:, None] * profile / profile.sum(axis=1, keepdims=True)
    counts = rng.negative_binomial(phi, phi / (phi + mean))

    return counts, copy_number, clones


@pytest.fixture(scope="session")
def synthetic_data():
    """Counts (cells x genes), copy number (genes x clones) and true labels."""
    return simulate_clones()


@pytest.fixture(scope="session")
def fast_config():
    """A short, quiet fit configuration."""
    from clonealign.models.config import CloneAlignConfig

    return CloneAlignConfig(max_iter=100, verbose=False, seed=0)


@pytest.fixture(scope="session")
def fitted_results(synthetic_data, fast_config):
    """One fit of the synthetic data shared across tests."""
    import clonealign

    counts, copy_number, _ = synthetic_data
    return clonealign.fit(counts, copy_number, config=fast_config)
