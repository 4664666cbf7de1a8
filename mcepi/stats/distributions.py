"""Link functions and distribution helpers for MCEpi.

Provides the logit/log links used by the two supported families, normal
quantiles, empirical quantiles with a fixed interpolation rule, and the
cluster-variance summaries (latent ICC, median odds ratio) used when
reporting random-intercept models.

Usage:
    from mcepi.stats.distributions import logit, inverse_link, empirical_quantiles
"""

import math
from typing import Sequence, Tuple

import numpy as np
from scipy.special import expit, gammaln
from scipy.special import logit as _logit
from scipy.stats import norm as _norm_dist

QUANTILE_METHOD = "linear"
"""numpy quantile rule: linear interpolation between order statistics (Hyndman-Fan type 7)."""

LOGISTIC_RESIDUAL_VARIANCE = math.pi**2 / 3


def logit(p):
    """Log-odds of a probability."""
    return _logit(p)


def inverse_logit(x):
    """Logistic function ``1 / (1 + exp(-x))``."""
    return expit(x)


def link(mean, family: str):
    """Map a mean (probability or rate) to the linear-predictor scale."""
    if family == "binomial":
        return logit(mean)
    if family == "poisson":
        return np.log(mean)
    raise ValueError(f"Unknown family: {family}")


def inverse_link(eta, family: str):
    """Map a linear predictor to the mean scale (probability or rate)."""
    if family == "binomial":
        return inverse_logit(eta)
    if family == "poisson":
        return np.exp(eta)
    raise ValueError(f"Unknown family: {family}")


def log_density(y: np.ndarray, eta: np.ndarray, family: str) -> np.ndarray:
    """Per-observation log-likelihood for a canonical-link GLM.

    Binomial (Bernoulli): ``y*eta - log(1 + exp(eta))``.
    Poisson: ``y*eta - exp(eta) - log(y!)``.
    """
    if family == "binomial":
        return y * eta - np.logaddexp(0.0, eta)
    if family == "poisson":
        return y * eta - np.exp(eta) - gammaln(y + 1.0)
    raise ValueError(f"Unknown family: {family}")


def variance_weights(mu: np.ndarray, family: str) -> np.ndarray:
    """GLM working weights for the canonical link (``Var(y)`` at *mu*)."""
    if family == "binomial":
        return mu * (1.0 - mu)
    if family == "poisson":
        return mu
    raise ValueError(f"Unknown family: {family}")


def norm_ppf(p: float) -> float:
    """Standard normal quantile function (inverse CDF)."""
    return float(_norm_dist.ppf(p))


def age_standard_deviation(age_range: Tuple[float, float], quantile: float = 0.99) -> float:
    """Standard deviation that places the half-range at the *quantile* z-score.

    ``sd = ((max - min) / 2) / z_quantile``.
    """
    low, high = age_range
    return ((high - low) / 2.0) / norm_ppf(quantile)


def empirical_quantiles(values: Sequence[float], probs: Sequence[float] = (0.025, 0.975)) -> np.ndarray:
    """Empirical quantiles by linear interpolation between order statistics.

    For sorted values ``x[0..n-1]`` and probability ``p`` the position is
    ``h = (n - 1) * p``; the result is ``x[floor(h)] + (h - floor(h)) *
    (x[floor(h) + 1] - x[floor(h)])``. This is R's default ``type = 7``.
    """
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        return np.full(len(probs), np.nan)
    return np.quantile(arr, probs, method=QUANTILE_METHOD)


def latent_icc(intercept_sd: float, family: str = "binomial") -> float:
    """Intraclass correlation of a random intercept on the latent scale.

    Only defined for the logistic model, where the level-1 residual
    variance of the latent logistic variable is ``pi^2 / 3``.
    """
    if family != "binomial":
        raise ValueError("latent ICC is only defined for the binomial family")
    tau2 = intercept_sd**2
    return tau2 / (tau2 + LOGISTIC_RESIDUAL_VARIANCE)


def median_odds_ratio(intercept_sd: float) -> float:
    """Median odds ratio between two random clusters: ``exp(sqrt(2) * sd * z_0.75)``."""
    return math.exp(math.sqrt(2.0) * intercept_sd * norm_ppf(0.75))
