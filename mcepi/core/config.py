"""
Simulation configuration for MCEpi.

``SimulationConfig`` is the immutable input to one simulation run. The
defaults reproduce the teaching scenario: 2000 people, an even sex split,
odds ratios of 1.05 for male sex and 1.10 per 15 years of age, and a 25%
prevalence among 50-year-old women, ages spread over roughly [48, 80].
"""

from dataclasses import dataclass, field, replace
from typing import Hashable, Optional, Tuple

from ..utils.validators import validate_config


@dataclass(frozen=True)
class SimulationConfig:
    """Generative parameters for one simulated population.

    Attributes:
        sample_size: Number of individuals.
        male_probability: Probability that an individual is male.
        odds_ratio_sex: Odds ratio (rate ratio for Poisson) of male vs female.
        odds_ratio_age: Odds ratio per ``age_delta`` years of age.
        age_delta: Age step that ``odds_ratio_age`` refers to.
        reference_prevalence: Prevalence among women at ``reference_age``
            (a rate for the Poisson family).
        reference_age: Age at which ``reference_prevalence`` holds.
        age_range: ``(min, max)``; ages are normal around the midpoint with
            ``age_sd_quantile`` of the mass inside the range.
        cluster_labels: City (cluster) identifiers; ``None`` for the
            unclustered path.
        cluster_weights: Relative cluster sizes, one per label; uniform when
            ``None``.
        cluster_intercept_sd: Standard deviation of the per-cluster random
            intercept.
        random_seed: Seed for a reproducible run; ``None`` draws from OS
            entropy.
        family: ``"binomial"`` (logit link) or ``"poisson"`` (log link).
        age_sd_quantile: Normal quantile placed at the range edges when
            deriving the age standard deviation.
    """

    sample_size: int = 2000
    male_probability: float = 0.5
    odds_ratio_sex: float = 1.05
    odds_ratio_age: float = 1.10
    age_delta: float = 15.0
    reference_prevalence: float = 0.25
    reference_age: float = 50.0
    age_range: Tuple[float, float] = (48.0, 80.0)
    cluster_labels: Optional[Tuple[Hashable, ...]] = None
    cluster_weights: Optional[Tuple[float, ...]] = None
    cluster_intercept_sd: float = 0.0
    random_seed: Optional[int] = field(default=None, compare=False)
    family: str = "binomial"
    age_sd_quantile: float = 0.99

    def __post_init__(self):
        # Normalise sequences to tuples so the config stays hashable.
        if self.cluster_labels is not None and not isinstance(self.cluster_labels, tuple):
            object.__setattr__(self, "cluster_labels", tuple(self.cluster_labels))
        if self.cluster_weights is not None and not isinstance(self.cluster_weights, tuple):
            object.__setattr__(self, "cluster_weights", tuple(self.cluster_weights))
        if self.age_range is not None and not isinstance(self.age_range, tuple):
            object.__setattr__(self, "age_range", tuple(self.age_range))

    @property
    def is_clustered(self) -> bool:
        return self.cluster_labels is not None

    @property
    def n_clusters(self) -> int:
        return len(self.cluster_labels) if self.cluster_labels is not None else 0

    def replace(self, **changes) -> "SimulationConfig":
        """Return a copy with *changes* applied."""
        return replace(self, **changes)

    def validate(self) -> "SimulationConfig":
        """Raise ``InvalidParameterError`` listing every invalid field."""
        validate_config(self).raise_if_invalid()
        return self
