"""
Validation utilities for MCEpi.

This module provides validation functions for simulation parameters and
runner settings. Every check runs before any random number is drawn.
"""

import math
from dataclasses import dataclass, field
from numbers import Integral, Real
from typing import Any, List, Optional, Sequence, Tuple

from ..errors import InvalidParameterError

__all__ = []

SUPPORTED_FAMILIES = ("binomial", "poisson")


@dataclass
class _ValidationResult:
    """Outcome of a validation check, carrying issues and warnings.

    Attributes:
        issues: ``(field, constraint, value)`` triples (empty when valid).
        warnings: List of non-fatal warning messages.
    """

    issues: List[Tuple[str, str, Any]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.issues

    def add(self, name: str, constraint: str, value: Any):
        self.issues.append((name, constraint, value))

    def extend(self, other: "_ValidationResult"):
        self.issues.extend(other.issues)
        self.warnings.extend(other.warnings)
        return self

    def raise_if_invalid(self):
        """Raise ``InvalidParameterError`` if the validation failed."""
        if not self.is_valid:
            name, constraint, value = self.issues[0]
            raise InvalidParameterError(name, constraint, value, issues=self.issues)


def _is_real(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool) and math.isfinite(float(value))


def _is_int(value: Any) -> bool:
    return isinstance(value, Integral) and not isinstance(value, bool)


def _validate_numeric_parameter(
    value: Any,
    name: str,
    min_val: Optional[float] = None,
    max_val: Optional[float] = None,
    min_inclusive: bool = True,
    max_inclusive: bool = True,
) -> _ValidationResult:
    """Generic validation for real-valued parameters."""
    result = _ValidationResult()

    if not _is_real(value):
        result.add(name, "a finite real number", value)
        return result

    low_ok = min_val is None or (value >= min_val if min_inclusive else value > min_val)
    high_ok = max_val is None or (value <= max_val if max_inclusive else value < max_val)
    if not (low_ok and high_ok):
        left = "[" if min_inclusive else "("
        right = "]" if max_inclusive else ")"
        low = "-inf" if min_val is None else f"{min_val:g}"
        high = "inf" if max_val is None else f"{max_val:g}"
        result.add(name, f"in {left}{low}, {high}{right}", value)

    return result


def _validate_probability(value: Any, name: str, open_interval: bool = False) -> _ValidationResult:
    """Validate a probability in [0, 1] (or (0, 1) when *open_interval*)."""
    return _validate_numeric_parameter(
        value,
        name,
        min_val=0.0,
        max_val=1.0,
        min_inclusive=not open_interval,
        max_inclusive=not open_interval,
    )


def _validate_positive(value: Any, name: str) -> _ValidationResult:
    """Validate a strictly positive real."""
    result = _ValidationResult()
    if not _is_real(value) or value <= 0:
        result.add(name, "a positive real number", value)
    return result


def _validate_sample_size(sample_size: Any, name: str = "sample_size") -> _ValidationResult:
    """Validate sample size parameter (positive integer)."""
    result = _ValidationResult()
    if not _is_int(sample_size) or sample_size <= 0:
        result.add(name, "a positive integer", sample_size)
    return result


def _validate_family(family: Any) -> _ValidationResult:
    result = _ValidationResult()
    if family not in SUPPORTED_FAMILIES:
        result.add("family", f"one of {list(SUPPORTED_FAMILIES)}", family)
    return result


def _validate_reference_prevalence(value: Any, family: str) -> _ValidationResult:
    """Prevalence must lie in (0, 1) for the logit link; a rate must be > 0 for the log link."""
    if family == "poisson":
        return _validate_positive(value, "reference_prevalence")
    return _validate_probability(value, "reference_prevalence", open_interval=True)


def _validate_age_range(age_range: Any) -> _ValidationResult:
    result = _ValidationResult()
    try:
        low, high = age_range
    except (TypeError, ValueError):
        result.add("age_range", "an ordered pair (min, max)", age_range)
        return result

    if not (_is_real(low) and _is_real(high)) or low >= high:
        result.add("age_range", "an ordered pair (min, max) with min < max", age_range)
    return result


def _validate_age_sd_quantile(value: Any) -> _ValidationResult:
    return _validate_numeric_parameter(value, "age_sd_quantile", min_val=0.5, max_val=1.0, min_inclusive=False, max_inclusive=False)


def _validate_clusters(
    cluster_labels: Optional[Sequence],
    cluster_weights: Optional[Sequence],
    cluster_intercept_sd: Any = 0.0,
) -> _ValidationResult:
    """Validate cluster labels, weights and the random-intercept sd.

    Nothing is checked when *cluster_labels* is ``None`` (unclustered path).
    Clustered data is always fitted with a random intercept, so at least two
    labels with a positive weight are required.
    """
    result = _ValidationResult()
    if cluster_labels is None:
        if cluster_weights is not None:
            result.add("cluster_weights", "omitted when cluster_labels is not set", cluster_weights)
        return result

    labels = list(cluster_labels)
    if not labels:
        result.add("cluster_labels", "a non-empty set of identifiers", cluster_labels)
        return result
    if len(set(labels)) != len(labels):
        result.add("cluster_labels", "distinct identifiers", cluster_labels)
    elif len(labels) < 2:
        result.add("cluster_labels", "at least two identifiers", cluster_labels)

    if cluster_weights is not None:
        weights = list(cluster_weights)
        if len(weights) != len(labels):
            result.add("cluster_weights", f"one weight per label ({len(labels)})", cluster_weights)
        elif any(not _is_real(w) or w < 0 for w in weights):
            result.add("cluster_weights", "non-negative real numbers", cluster_weights)
        elif sum(weights) <= 0:
            result.add("cluster_weights", "not all zero", cluster_weights)
        elif len(labels) >= 2 and sum(1 for w in weights if w > 0) < 2:
            result.add("cluster_weights", "positive for at least two clusters", cluster_weights)

    result.extend(_validate_numeric_parameter(cluster_intercept_sd, "cluster_intercept_sd", min_val=0.0))
    return result


def _validate_seed(seed: Any) -> Optional[str]:
    """Return an error message for an unusable seed, ``None`` if fine."""
    if seed is None:
        return None
    if not _is_int(seed):
        return f"seed must be an integer or None, got {type(seed).__name__}"
    if seed < 0:
        return f"seed must be non-negative, got {seed}"
    return None


def _validate_replicates(n_replicates: Any) -> _ValidationResult:
    """Validate number of Monte Carlo replicates."""
    result = _validate_sample_size(n_replicates, name="n_replicates")
    if result.is_valid and n_replicates < 100:
        result.warnings.append(f"Low replicate count ({n_replicates}). Consider using at least 100 for stable quantiles.")
    return result


def _validate_failure_rate(rate: Any) -> _ValidationResult:
    return _validate_probability(rate, "max_failure_rate")


def _validate_parallel_settings(enable: Any, n_cores: Optional[int]) -> Tuple[Tuple[bool, int], _ValidationResult]:
    """Validate parallel processing settings."""
    import multiprocessing as mp

    result = _ValidationResult()
    if not isinstance(enable, bool):
        result.add("parallel", "True or False", enable)

    max_cores = mp.cpu_count() or 1
    if n_cores is None:
        n_cores = max(1, max_cores // 2)
    elif not _is_int(n_cores) or n_cores < 1:
        result.add("n_cores", "a positive integer", n_cores)
        return (False, 1), result
    elif n_cores > max_cores:
        result.warnings.append(f"n_cores ({n_cores}) exceeds available CPUs ({max_cores}); using {max_cores}")
        n_cores = max_cores

    return (bool(enable), int(n_cores)), result


def validate_config(config) -> _ValidationResult:
    """Run every check on a ``SimulationConfig`` and collect the issues."""
    result = _ValidationResult()
    result.extend(_validate_family(config.family))
    result.extend(_validate_sample_size(config.sample_size))
    result.extend(_validate_probability(config.male_probability, "male_probability"))
    result.extend(_validate_positive(config.odds_ratio_sex, "odds_ratio_sex"))
    result.extend(_validate_positive(config.odds_ratio_age, "odds_ratio_age"))
    if not _is_real(config.age_delta) or config.age_delta == 0:
        result.add("age_delta", "a non-zero real number", config.age_delta)
    result.extend(_validate_reference_prevalence(config.reference_prevalence, config.family))
    result.extend(_validate_numeric_parameter(config.reference_age, "reference_age"))
    result.extend(_validate_age_range(config.age_range))
    result.extend(_validate_age_sd_quantile(config.age_sd_quantile))
    result.extend(_validate_clusters(config.cluster_labels, config.cluster_weights, config.cluster_intercept_sd))
    # random_seed is checked by mcepi.core.seeds, which raises RandomSourceError
    return result
