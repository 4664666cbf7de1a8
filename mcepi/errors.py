"""
Exception hierarchy for MCEpi.

Parameter problems are raised before any random number is drawn.
Fit failures are recoverable at the Monte Carlo level: the replicate is
dropped and counted, and the run only aborts when too many replicates fail.
"""

from typing import Any, List, Optional, Sequence, Tuple


class MCEpiError(Exception):
    """Base class for all MCEpi errors."""


class InvalidParameterError(MCEpiError, ValueError):
    """Malformed or out-of-domain configuration.

    Attributes:
        field: Name of the first offending parameter.
        constraint: Human-readable constraint that was violated.
        value: The rejected value.
        issues: Every ``(field, constraint, value)`` problem found, in
            the order the checks ran.
    """

    def __init__(
        self,
        field: str,
        constraint: str,
        value: Any = None,
        issues: Optional[Sequence[Tuple[str, str, Any]]] = None,
    ):
        self.field = field
        self.constraint = constraint
        self.value = value
        self.issues: List[Tuple[str, str, Any]] = list(issues) if issues else [(field, constraint, value)]

        if len(self.issues) == 1:
            message = f"{field} must be {constraint}, got {value!r}"
        else:
            message = "Validation failed:\n" + "\n".join(f"• {f} must be {c}, got {v!r}" for f, c, v in self.issues)
        super().__init__(message)


class FitConvergenceError(MCEpiError, RuntimeError):
    """The model fit did not converge or produced a degenerate estimate."""

    def __init__(self, reason: str, replicate_index: Optional[int] = None):
        self.reason = reason
        self.replicate_index = replicate_index
        prefix = f"Replicate {replicate_index}: " if replicate_index is not None else ""
        super().__init__(f"{prefix}{reason}")


class ExcessiveFitFailureError(MCEpiError, RuntimeError):
    """Too many Monte Carlo replicates failed to fit."""

    def __init__(self, n_failed: int, n_replicates: int, threshold: float, failures: Optional[list] = None):
        self.n_failed = n_failed
        self.n_replicates = n_replicates
        self.threshold = threshold
        self.failures = failures or []
        failed_pct = n_failed / n_replicates if n_replicates else 1.0
        super().__init__(
            f"Too many failed replicates: {n_failed}/{n_replicates} "
            f"({failed_pct:.1%}), threshold: {threshold:.1%}"
        )


class RandomSourceError(MCEpiError, ValueError):
    """The random source could not be seeded reproducibly."""
