"""
Data Generator for MCEpi.

Generates synthetic epidemiological datasets with:
- Sex (Bernoulli) and age (rounded normal) covariates
- Optional city (cluster) membership with a shared random intercept
- Binary (logistic) or count (Poisson) outcomes

All draws come from an explicit ``numpy.random.Generator`` in a fixed
order: sex, age, cluster membership, cluster intercepts, outcome.
"""

from dataclasses import dataclass
from typing import Dict, Hashable, Iterator, NamedTuple, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..core.coefficients import DerivedCoefficients, derive_coefficients
from ..core.seeds import make_rng
from ..utils.validators import (
    _validate_age_range,
    _validate_age_sd_quantile,
    _validate_clusters,
    _validate_numeric_parameter,
    _validate_probability,
    _validate_sample_size,
    validate_config,
)
from .distributions import age_standard_deviation, inverse_link

SEX_LEVELS = ("female", "male")


class SimulatedIndividual(NamedTuple):
    """One simulated person."""

    sex: str
    age: float
    cluster: Optional[Hashable]
    cluster_intercept: Optional[float]
    linear_predictor: float
    mean: float
    outcome: int


@dataclass
class Covariates:
    """Sampled covariates for one replicate.

    Attributes:
        male: ``(n,)`` 0/1 indicator, 1 for male.
        age: ``(n,)`` ages, rounded to whole years.
        cluster: ``(n,)`` index into ``cluster_labels``, or ``None``.
        cluster_labels: Cluster identifiers in configuration order.
    """

    male: np.ndarray
    age: np.ndarray
    cluster: Optional[np.ndarray] = None
    cluster_labels: Optional[Tuple[Hashable, ...]] = None

    def __len__(self) -> int:
        return len(self.male)

    @property
    def is_clustered(self) -> bool:
        return self.cluster is not None


@dataclass
class SimulatedDataset:
    """Individual-level table produced by one simulation.

    Columns are stored as aligned numpy arrays; ``to_frame`` gives the
    pandas view consumed by the fitters and by reporting code.
    """

    male: np.ndarray
    age: np.ndarray
    linear_predictor: np.ndarray
    mean: np.ndarray
    outcome: np.ndarray
    coefficients: DerivedCoefficients
    cluster: Optional[np.ndarray] = None
    cluster_labels: Optional[Tuple[Hashable, ...]] = None
    cluster_intercepts: Optional[np.ndarray] = None
    """(K,) random-intercept draw per label, in ``cluster_labels`` order."""

    def __len__(self) -> int:
        return len(self.outcome)

    @property
    def family(self) -> str:
        return self.coefficients.family

    @property
    def is_clustered(self) -> bool:
        return self.cluster is not None

    @property
    def individual_cluster_intercepts(self) -> Optional[np.ndarray]:
        if self.cluster_intercepts is None:
            return None
        return self.cluster_intercepts[self.cluster]

    def individuals(self) -> Iterator[SimulatedIndividual]:
        """Iterate over the rows as ``SimulatedIndividual`` records."""
        labels = self.cluster_labels
        per_person = self.individual_cluster_intercepts
        for i in range(len(self)):
            cluster = labels[self.cluster[i]] if self.cluster is not None else None
            yield SimulatedIndividual(
                sex=SEX_LEVELS[int(self.male[i])],
                age=float(self.age[i]),
                cluster=cluster,
                cluster_intercept=float(per_person[i]) if per_person is not None else None,
                linear_predictor=float(self.linear_predictor[i]),
                mean=float(self.mean[i]),
                outcome=int(self.outcome[i]),
            )

    def to_frame(self) -> pd.DataFrame:
        """Return the dataset as a DataFrame (``sex`` and ``cluster`` categorical)."""
        data = {
            "sex": pd.Categorical.from_codes(self.male.astype(int), categories=list(SEX_LEVELS)),
            "age": self.age,
        }
        if self.is_clustered:
            data["cluster"] = pd.Categorical.from_codes(self.cluster, categories=list(self.cluster_labels))
            data["cluster_intercept"] = self.individual_cluster_intercepts
        data["linear_predictor"] = self.linear_predictor
        data["mean"] = self.mean
        data["outcome"] = self.outcome
        return pd.DataFrame(data)

    def observed_prevalence(self) -> float:
        """Mean outcome (prevalence for binary outcomes, mean count for Poisson)."""
        return float(np.mean(self.outcome))

    def cluster_summary(self) -> pd.DataFrame:
        """Per-cluster size, random-intercept draw and observed mean outcome."""
        if not self.is_clustered:
            raise ValueError("cluster_summary requires a clustered dataset")
        K = len(self.cluster_labels)
        sizes = np.bincount(self.cluster, minlength=K)
        totals = np.bincount(self.cluster, weights=self.outcome, minlength=K)
        with np.errstate(invalid="ignore", divide="ignore"):
            observed = np.where(sizes > 0, totals / np.maximum(sizes, 1), np.nan)
        return pd.DataFrame(
            {
                "n": sizes,
                "cluster_intercept": self.cluster_intercepts,
                "observed_mean": observed,
            },
            index=pd.Index(list(self.cluster_labels), name="cluster"),
        )


def sample_covariates(
    rng: np.random.Generator,
    sample_size: int,
    male_probability: float,
    age_range: Tuple[float, float],
    cluster_labels: Optional[Sequence[Hashable]] = None,
    cluster_weights: Optional[Sequence[float]] = None,
    age_sd_quantile: float = 0.99,
) -> Covariates:
    """Draw sex, age and (optionally) cluster membership.

    Algorithm:

    1. ``male ~ Bernoulli(male_probability)``.
    2. ``age ~ Normal(midpoint, sd)`` with ``sd = half-range / z(age_sd_quantile)``,
       rounded to the nearest whole year.
    3. If *cluster_labels* is given, ``cluster ~ Categorical(weights / sum(weights))``
       (uniform when *cluster_weights* is ``None``).

    Args:
        rng: Random source; consumed in the order above.
        sample_size: Number of individuals (positive).
        male_probability: Probability of male sex, in [0, 1].
        age_range: ``(min, max)`` with ``min < max``.
        cluster_labels: At least two distinct cluster identifiers.
        cluster_weights: Non-negative relative sizes, at least two positive.
        age_sd_quantile: Normal quantile placed at the range edges.

    Raises:
        InvalidParameterError: On degenerate inputs, before any draw.
    """
    check = _validate_sample_size(sample_size)
    check.extend(_validate_probability(male_probability, "male_probability"))
    check.extend(_validate_age_range(age_range))
    check.extend(_validate_age_sd_quantile(age_sd_quantile))
    check.extend(_validate_clusters(cluster_labels, cluster_weights))
    check.raise_if_invalid()

    low, high = age_range
    age_mean = (low + high) / 2.0
    age_sd = age_standard_deviation((low, high), age_sd_quantile)

    male = rng.binomial(1, male_probability, size=sample_size).astype(np.int8)
    age = np.round(rng.normal(age_mean, age_sd, size=sample_size))

    cluster = None
    labels = None
    if cluster_labels is not None:
        labels = tuple(cluster_labels)
        K = len(labels)
        if cluster_weights is None:
            probs = np.full(K, 1.0 / K)
        else:
            weights = np.asarray(cluster_weights, dtype=float)
            probs = weights / weights.sum()
        cluster = rng.choice(K, size=sample_size, replace=True, p=probs)

    return Covariates(male=male, age=age, cluster=cluster, cluster_labels=labels)


def simulate_outcomes(
    rng: np.random.Generator,
    covariates: Covariates,
    coefficients: DerivedCoefficients,
    cluster_intercept_sd: float = 0.0,
) -> SimulatedDataset:
    """Draw cluster intercepts and outcomes for sampled covariates.

    1. Clustered only: one ``Normal(0, cluster_intercept_sd)`` draw per
       label, in label order, shared by every member of that cluster.
    2. ``eta = intercept + sex_coef * male + age_coef * age (+ cluster intercept)``.
    3. Binomial: ``outcome ~ Bernoulli(1 / (1 + exp(-eta)))``;
       Poisson: ``outcome ~ Poisson(exp(eta))``.
    """
    cluster_intercepts = None
    offset = 0.0
    if covariates.is_clustered:
        check = _validate_numeric_parameter(cluster_intercept_sd, "cluster_intercept_sd", min_val=0.0)
        check.raise_if_invalid()
        K = len(covariates.cluster_labels)
        cluster_intercepts = rng.normal(0.0, cluster_intercept_sd, size=K)
        offset = cluster_intercepts[covariates.cluster]

    eta = coefficients.linear_predictor(covariates.male, covariates.age, offset)
    mean = inverse_link(eta, coefficients.family)

    if coefficients.family == "binomial":
        outcome = rng.binomial(1, mean)
    else:
        outcome = rng.poisson(mean)

    return SimulatedDataset(
        male=covariates.male,
        age=covariates.age,
        linear_predictor=eta,
        mean=mean,
        outcome=outcome.astype(np.int64),
        coefficients=coefficients,
        cluster=covariates.cluster,
        cluster_labels=covariates.cluster_labels,
        cluster_intercepts=cluster_intercepts,
    )


def simulate_dataset(config, rng: Optional[np.random.Generator] = None) -> SimulatedDataset:
    """Run one full simulation for *config*.

    The config is validated and the coefficients derived before the random
    source is touched. When *rng* is ``None`` a generator is seeded once
    from ``config.random_seed``.

    Returns:
        ``SimulatedDataset``.

    Raises:
        InvalidParameterError: If *config* is invalid.
        RandomSourceError: If ``config.random_seed`` is unusable.
    """
    validate_config(config).raise_if_invalid()
    coefficients = derive_coefficients(config)
    if rng is None:
        rng = make_rng(config.random_seed)

    covariates = sample_covariates(
        rng,
        config.sample_size,
        config.male_probability,
        config.age_range,
        cluster_labels=config.cluster_labels,
        cluster_weights=config.cluster_weights,
        age_sd_quantile=config.age_sd_quantile,
    )
    return simulate_outcomes(rng, covariates, coefficients, config.cluster_intercept_sd)


def true_cluster_intercepts(dataset: SimulatedDataset) -> Dict[Hashable, float]:
    """Mapping of cluster label to its simulated random intercept."""
    if not dataset.is_clustered:
        return {}
    return {label: float(b) for label, b in zip(dataset.cluster_labels, dataset.cluster_intercepts)}
