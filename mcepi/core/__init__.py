"""Core components for the MCEpi framework.

Re-exports the foundational building blocks:

- ``SimulationConfig`` — the generative scenario.
- ``DerivedCoefficients``, ``derive_coefficients`` — odds ratios and
  prevalence turned into linear-predictor coefficients.
- ``MonteCarloRunner``, ``fit_model``, ``run_replicate`` — Monte Carlo
  execution.
- ``FitResult``, ``ReplicateSummary``, ``MonteCarloResult``,
  ``ResultsProcessor`` — structured outputs and their aggregation.
- ``make_rng``, ``replicate_rng``, ``resolve_base_seed`` — random sources.
"""

from .coefficients import DerivedCoefficients, derive_coefficients
from .config import SimulationConfig
from .results import (
    FitResult,
    MonteCarloResult,
    ReplicateFailure,
    ReplicateSummary,
    ResultsProcessor,
    true_values,
)
from .seeds import make_rng, replicate_rng, resolve_base_seed
from .simulation import MonteCarloRunner, fit_model, run_replicate

__all__ = [
    # Configuration
    "SimulationConfig",
    "DerivedCoefficients",
    "derive_coefficients",
    # Simulation
    "MonteCarloRunner",
    "fit_model",
    "run_replicate",
    # Results
    "FitResult",
    "ReplicateFailure",
    "ReplicateSummary",
    "MonteCarloResult",
    "ResultsProcessor",
    "true_values",
    # Random sources
    "make_rng",
    "replicate_rng",
    "resolve_base_seed",
]
