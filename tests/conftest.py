"""Shared pytest fixtures and configuration.

This file is automatically loaded by pytest and provides fixtures
accessible to all tests.
"""

import os

import pytest
import torch
from hypothesis import settings, HealthCheck

from tests.helpers import softmax_rollouts

# =============================================================================
# Hypothesis Configuration
# =============================================================================

settings.register_profile(
    "ci",
    max_examples=50,  # Faster for CI
    deadline=None,  # No deadlines for slow tests
    suppress_health_check=[HealthCheck.too_slow],
)

settings.register_profile(
    "dev",
    max_examples=10,  # Very fast for local development
    deadline=None,  # First torch call per process is slow
)

settings.register_profile(
    "thorough",
    max_examples=1000,  # Comprehensive for nightly runs
    deadline=None,
)

# Load profile based on environment variable
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "dev"))


# =============================================================================
# Rollout Fixtures
# =============================================================================


@pytest.fixture
def ragged_rollouts():
    """Three lanes of lengths 3, 1 and 2, softmax actions over 3 choices."""
    return softmax_rollouts([[1.0, 0.5, 2.0], [3.0], [-1.0, 1.0]])


# =============================================================================
# Seed-Based RNG for Reproducibility
# =============================================================================


@pytest.fixture(autouse=True)
def reset_random_seeds():
    """Reset random seeds before each test for reproducibility.

    This fixture runs automatically for all tests.
    """
    import random
    import numpy as np

    random.seed(42)
    np.random.seed(42)
    torch.manual_seed(42)

    yield  # Test runs here
