"""
Parameter derivation for MCEpi.

Turns interpretable epidemiological targets (odds ratios and a reference
prevalence) into linear-predictor coefficients::

    age_coefficient = log(OR_age) / age_delta
    sex_coefficient = log(OR_sex)
    intercept       = link(reference_prevalence) - age_coefficient * reference_age

where ``link`` is the logit for the binomial family and the log for the
Poisson family. The derivation is pure: no randomness, no side effects.
"""

import math
from dataclasses import dataclass

import numpy as np

from ..stats.distributions import inverse_link, link
from ..utils.validators import (
    _is_real,
    _validate_family,
    _validate_positive,
    _validate_reference_prevalence,
)


@dataclass(frozen=True)
class DerivedCoefficients:
    """Linear-predictor coefficients implied by a ``SimulationConfig``."""

    intercept: float
    sex_coefficient: float
    age_coefficient: float
    age_delta: float
    family: str = "binomial"

    @property
    def sex_effect(self) -> float:
        """Odds ratio (rate ratio for Poisson) of male vs female."""
        return math.exp(self.sex_coefficient)

    @property
    def age_effect(self) -> float:
        """Odds ratio (rate ratio for Poisson) per ``age_delta`` years."""
        return math.exp(self.age_coefficient * self.age_delta)

    def linear_predictor(self, male, age, cluster_intercept=0.0):
        """``intercept + sex_coef * male + age_coef * age (+ cluster intercept)``."""
        male = np.asarray(male, dtype=float)
        age = np.asarray(age, dtype=float)
        return self.intercept + self.sex_coefficient * male + self.age_coefficient * age + cluster_intercept

    def implied_prevalence(self, age, male=False):
        """Mean outcome (prevalence or rate) implied for a given age and sex."""
        return inverse_link(self.linear_predictor(male, age), self.family)


def derive_coefficients(config) -> DerivedCoefficients:
    """Derive the linear-predictor coefficients for *config*.

    Args:
        config: ``SimulationConfig`` (only the effect and baseline fields
            are read).

    Returns:
        ``DerivedCoefficients``.

    Raises:
        InvalidParameterError: If an odds ratio is not positive,
            ``age_delta`` is zero, or the reference prevalence lies outside
            ``(0, 1)`` (binomial) / is not positive (Poisson).
    """
    result = _validate_family(config.family)
    if result.is_valid:
        result.extend(_validate_reference_prevalence(config.reference_prevalence, config.family))
    result.extend(_validate_positive(config.odds_ratio_sex, "odds_ratio_sex"))
    result.extend(_validate_positive(config.odds_ratio_age, "odds_ratio_age"))
    if not _is_real(config.age_delta) or config.age_delta == 0:
        result.add("age_delta", "a non-zero real number", config.age_delta)
    if not _is_real(config.reference_age):
        result.add("reference_age", "a finite real number", config.reference_age)
    result.raise_if_invalid()

    age_coefficient = math.log(config.odds_ratio_age) / config.age_delta
    sex_coefficient = math.log(config.odds_ratio_sex)
    intercept = float(link(config.reference_prevalence, config.family)) - age_coefficient * config.reference_age

    return DerivedCoefficients(
        intercept=intercept,
        sex_coefficient=sex_coefficient,
        age_coefficient=age_coefficient,
        age_delta=float(config.age_delta),
        family=config.family,
    )
