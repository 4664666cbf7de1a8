"""
Shared pytest fixtures for MCEpi tests.
"""

import contextlib
import io
import sys
from pathlib import Path

import numpy as np
import pytest

# Make ``tests.config`` importable when pytest is launched from any directory.
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from tests.config import (  # noqa: E402
    AGE_DELTA,
    AGE_RANGE,
    CLUSTER_LABELS,
    CLUSTER_SD,
    CLUSTER_WEIGHTS,
    OR_AGE,
    OR_SEX,
    REFERENCE_AGE,
    REFERENCE_PREVALENCE,
    SAMPLE_SIZE,
    SEED,
    SMALL_SAMPLE_SIZE,
)


def pytest_configure(config):
    config.addinivalue_line("markers", "slow: long-running statistical accuracy tests")
    config.addinivalue_line("markers", "lme: tests that fit random-intercept mixed models")


@pytest.fixture
def suppress_output():
    """Silence stdout (``set_seed`` and friends print)."""
    with contextlib.redirect_stdout(io.StringIO()):
        yield


@pytest.fixture
def base_config():
    """Teaching scenario, unclustered."""
    from mcepi import SimulationConfig

    return SimulationConfig(
        sample_size=SAMPLE_SIZE,
        male_probability=0.5,
        odds_ratio_sex=OR_SEX,
        odds_ratio_age=OR_AGE,
        age_delta=AGE_DELTA,
        reference_prevalence=REFERENCE_PREVALENCE,
        reference_age=REFERENCE_AGE,
        age_range=AGE_RANGE,
        random_seed=SEED,
    )


@pytest.fixture
def small_config(base_config):
    """Unclustered scenario small enough for fast fits."""
    return base_config.replace(sample_size=SMALL_SAMPLE_SIZE)


@pytest.fixture
def clustered_config(base_config):
    """Teaching scenario with five weighted cities."""
    return base_config.replace(
        cluster_labels=CLUSTER_LABELS,
        cluster_weights=CLUSTER_WEIGHTS,
        cluster_intercept_sd=CLUSTER_SD,
    )


@pytest.fixture
def rng():
    """Fresh seeded generator."""
    return np.random.default_rng(SEED)
