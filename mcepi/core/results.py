"""
Results processing for MCEpi.

This module defines the structured outputs of a fit and of a Monte Carlo
run, and aggregates per-replicate estimates into empirical summaries.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, List, Optional, Tuple

import numpy as np
import pandas as pd

from ..stats.distributions import empirical_quantiles, latent_icc, median_odds_ratio, norm_ppf

SUMMARY_PROBS = (0.025, 0.975)

ESTIMATED_QUANTITIES = ("sex_effect", "age_effect")
CLUSTERED_QUANTITIES = ("intercept_sd",)


@dataclass(frozen=True)
class FitResult:
    """Estimates from one fitted model.

    ``sex_effect`` and ``age_effect`` are exponentiated coefficients (odds
    ratios for the binomial family, rate ratios for Poisson); the age
    effect is expressed per ``age_delta`` years so that it is directly
    comparable with the configured ``odds_ratio_age``.

    Attributes:
        sex_effect: exp(sex coefficient).
        age_effect: exp(age coefficient * age_delta).
        intercept: Fixed intercept on the link scale.
        sex_coefficient: Male-vs-female coefficient on the link scale.
        age_coefficient: Per-year age coefficient on the link scale.
        age_delta: Age step used for ``age_effect``.
        family: ``"binomial"`` or ``"poisson"``.
        method: Fitting backend that produced the estimates.
        sex_se: Standard error of ``sex_coefficient`` (NaN if unavailable).
        age_se: Standard error of ``age_coefficient`` (NaN if unavailable).
        intercept_sd: Random-intercept standard deviation (mixed models only).
        cluster_intercepts: Predicted random intercept per cluster label
            (mixed models only).
    """

    sex_effect: float
    age_effect: float
    intercept: float
    sex_coefficient: float
    age_coefficient: float
    age_delta: float
    family: str
    method: str
    sex_se: float = math.nan
    age_se: float = math.nan
    intercept_sd: Optional[float] = None
    cluster_intercepts: Optional[Dict[Hashable, float]] = None

    @classmethod
    def from_coefficients(
        cls,
        intercept: float,
        sex_coefficient: float,
        age_coefficient: float,
        age_delta: float,
        family: str,
        method: str,
        sex_se: float = math.nan,
        age_se: float = math.nan,
        intercept_sd: Optional[float] = None,
        cluster_intercepts: Optional[Dict[Hashable, float]] = None,
    ) -> "FitResult":
        """Build a result from link-scale coefficients."""
        return cls(
            sex_effect=math.exp(sex_coefficient),
            age_effect=math.exp(age_coefficient * age_delta),
            intercept=float(intercept),
            sex_coefficient=float(sex_coefficient),
            age_coefficient=float(age_coefficient),
            age_delta=float(age_delta),
            family=family,
            method=method,
            sex_se=float(sex_se),
            age_se=float(age_se),
            intercept_sd=None if intercept_sd is None else float(intercept_sd),
            cluster_intercepts=cluster_intercepts,
        )

    @property
    def is_mixed(self) -> bool:
        return self.intercept_sd is not None

    def confidence_interval(self, name: str, level: float = 0.95) -> Tuple[float, float]:
        """Wald interval for ``"sex_effect"`` or ``"age_effect"`` on the ratio scale."""
        z = norm_ppf(0.5 + level / 2.0)
        if name == "sex_effect":
            coef, se, scale = self.sex_coefficient, self.sex_se, 1.0
        elif name == "age_effect":
            coef, se, scale = self.age_coefficient, self.age_se, self.age_delta
        else:
            raise ValueError(f"No confidence interval for '{name}'")
        return math.exp((coef - z * se) * scale), math.exp((coef + z * se) * scale)

    @property
    def latent_icc(self) -> Optional[float]:
        """Latent-scale ICC of the random intercept (logistic mixed models only)."""
        if self.intercept_sd is None or self.family != "binomial":
            return None
        return latent_icc(self.intercept_sd, self.family)

    @property
    def median_odds_ratio(self) -> Optional[float]:
        """Median odds ratio between clusters (logistic mixed models only)."""
        if self.intercept_sd is None or self.family != "binomial":
            return None
        return median_odds_ratio(self.intercept_sd)

    def estimates(self) -> Dict[str, float]:
        """Named estimates that are summarised across replicates."""
        values = {name: getattr(self, name) for name in ESTIMATED_QUANTITIES}
        if self.intercept_sd is not None:
            values["intercept_sd"] = self.intercept_sd
        return values


@dataclass(frozen=True)
class ReplicateFailure:
    """A replicate excluded from the summary because its fit failed."""

    index: int
    reason: str


@dataclass(frozen=True)
class ReplicateSummary:
    """Empirical distribution of one estimated quantity across replicates."""

    name: str
    true_value: float
    empirical_mean: float
    lower_quantile: float
    upper_quantile: float
    n_replicates: int

    @property
    def covers_truth(self) -> bool:
        """``True`` if the true value lies inside the empirical 2.5%-97.5% interval."""
        return self.lower_quantile <= self.true_value <= self.upper_quantile

    @property
    def relative_bias(self) -> float:
        """``(mean - truth) / truth`` (NaN when the truth is zero)."""
        if self.true_value == 0:
            return math.nan
        return (self.empirical_mean - self.true_value) / self.true_value


class ResultsProcessor:
    """Aggregates per-replicate ``FitResult`` records into summaries.

    Each named quantity is aggregated on its own: mean across replicates
    and the 2.5%/97.5% empirical quantiles (linear interpolation between
    order statistics).
    """

    def __init__(self, probs: Tuple[float, float] = SUMMARY_PROBS):
        self.probs = probs

    def summarize(self, fits: List[FitResult], truth: Dict[str, float]) -> Dict[str, ReplicateSummary]:
        """
        Summarise estimates for every quantity in *truth*.

        Args:
            fits: Successful fits, one per replicate.
            truth: Mapping of quantity name to its true value.

        Returns:
            Mapping of quantity name to ``ReplicateSummary``.
        """
        summaries = {}
        for name, true_value in truth.items():
            values = np.array([getattr(fit, name) for fit in fits], dtype=float)
            summaries[name] = self.summarize_values(name, values, true_value)
        return summaries

    def summarize_values(self, name: str, values: np.ndarray, true_value: float) -> ReplicateSummary:
        values = np.asarray(values, dtype=float)
        if values.size == 0:
            mean = math.nan
        else:
            mean = float(np.mean(values))
        lower, upper = empirical_quantiles(values, self.probs)
        return ReplicateSummary(
            name=name,
            true_value=float(true_value),
            empirical_mean=mean,
            lower_quantile=float(lower),
            upper_quantile=float(upper),
            n_replicates=int(values.size),
        )


def true_values(config) -> Dict[str, float]:
    """Ground-truth values of the summarised quantities for *config*."""
    truth = {
        "sex_effect": float(config.odds_ratio_sex),
        "age_effect": float(config.odds_ratio_age),
    }
    if config.is_clustered:
        truth["intercept_sd"] = float(config.cluster_intercept_sd)
    return truth


@dataclass
class MonteCarloResult:
    """Outcome of a full Monte Carlo run.

    Attributes:
        config: The simulated configuration.
        coefficients: ``DerivedCoefficients`` for *config*.
        base_seed: Seed every replicate stream was derived from.
        n_replicates: Number of replicates attempted.
        fits: Successful fits in replicate order.
        replicate_indices: Replicate index of each entry in *fits*.
        failures: Excluded replicates with their failure reasons.
        summary: Quantity name to ``ReplicateSummary``.
        datasets: Simulated datasets per replicate index (only when
            requested).
    """

    config: Any
    coefficients: Any
    base_seed: int
    n_replicates: int
    fits: List[FitResult]
    replicate_indices: List[int]
    failures: List[ReplicateFailure] = field(default_factory=list)
    summary: Dict[str, ReplicateSummary] = field(default_factory=dict)
    datasets: Optional[Dict[int, Any]] = None

    @property
    def n_failed(self) -> int:
        return len(self.failures)

    @property
    def n_successful(self) -> int:
        return len(self.fits)

    @property
    def failure_rate(self) -> float:
        return self.n_failed / self.n_replicates if self.n_replicates else 0.0

    def fit_for(self, index: int) -> Optional[FitResult]:
        """Fit of replicate *index*, or ``None`` if it failed."""
        for idx, fit in zip(self.replicate_indices, self.fits):
            if idx == index:
                return fit
        return None

    def to_frame(self) -> pd.DataFrame:
        """One row per successful replicate with its named estimates."""
        rows = []
        for idx, fit in zip(self.replicate_indices, self.fits):
            row = {"replicate": idx}
            row.update(fit.estimates())
            row["sex_coefficient"] = fit.sex_coefficient
            row["age_coefficient"] = fit.age_coefficient
            row["intercept"] = fit.intercept
            rows.append(row)
        return pd.DataFrame(rows)

    def summary_frame(self) -> pd.DataFrame:
        """Summary table indexed by quantity name."""
        records = [
            {
                "quantity": s.name,
                "true_value": s.true_value,
                "empirical_mean": s.empirical_mean,
                "lower_quantile": s.lower_quantile,
                "upper_quantile": s.upper_quantile,
                "n_replicates": s.n_replicates,
            }
            for s in self.summary.values()
        ]
        return pd.DataFrame(records).set_index("quantity")
