"""MCEpi - Monte Carlo simulate-and-recover for epidemiological models.

Simulates synthetic populations (sex, age, optional city clusters and a
binary or count outcome) under known odds ratios, fits logistic or Poisson
regression and random-intercept mixed models, and compares the recovered
estimates against the truth across Monte Carlo replicates.

Example:
    >>> from mcepi import MCEpi
    >>>
    >>> model = MCEpi()
    >>> model.set_effects(odds_ratio_sex=1.05, odds_ratio_age=1.10, age_delta=15)
    >>> result = model.run_replicates()
    >>>
    >>> model.set_clusters(["A", "B", "C", "D", "E"], weights=[1, 2, 2, 3, 3], intercept_sd=2.0)
    >>> result = model.run_replicates()
"""

from importlib.metadata import version as _get_version

from .core import (
    DerivedCoefficients,
    FitResult,
    MonteCarloResult,
    MonteCarloRunner,
    ReplicateSummary,
    SimulationConfig,
    derive_coefficients,
    fit_model,
)
from .errors import (
    ExcessiveFitFailureError,
    FitConvergenceError,
    InvalidParameterError,
    MCEpiError,
    RandomSourceError,
)
from .model import MCEpi
from .progress import PrintReporter, ProgressReporter, SimulationCancelled, TqdmReporter
from .stats.data_generation import SimulatedDataset, SimulatedIndividual, sample_covariates, simulate_dataset, simulate_outcomes

__version__ = _get_version("MCEpi")
__author__ = "Pawel Lenartowicz"
__email__ = "pawellenartowicz@europe.com"

__all__ = [
    "MCEpi",
    "SimulationConfig",
    "DerivedCoefficients",
    "derive_coefficients",
    "sample_covariates",
    "simulate_outcomes",
    "simulate_dataset",
    "SimulatedIndividual",
    "SimulatedDataset",
    "fit_model",
    "FitResult",
    "MonteCarloRunner",
    "MonteCarloResult",
    "ReplicateSummary",
    "MCEpiError",
    "InvalidParameterError",
    "FitConvergenceError",
    "ExcessiveFitFailureError",
    "RandomSourceError",
    "SimulationCancelled",
    "ProgressReporter",
    "PrintReporter",
    "TqdmReporter",
]
