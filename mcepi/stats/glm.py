"""Fixed-effects GLM fitting for MCEpi.

Fits ``outcome ~ male + age`` by maximum likelihood with either
statsmodels (IRLS, default) or scikit-learn (unpenalised L-BFGS). Both
adapters fill a ``FitResult`` explicitly; library-specific parameter
names never leave this module.

Non-convergence and perfect separation raise ``FitConvergenceError`` so
the Monte Carlo driver can exclude the replicate.
"""

import warnings
from typing import Tuple

import numpy as np

from ..core.results import FitResult
from ..errors import FitConvergenceError, InvalidParameterError

GLM_BACKENDS = ("statsmodels", "sklearn")


def design_matrix(dataset) -> np.ndarray:
    """``(n, 3)`` design matrix ``[1, male, age]``."""
    n = len(dataset)
    return np.column_stack([np.ones(n), dataset.male.astype(float), dataset.age.astype(float)])


def check_outcome(dataset):
    """Reject outcomes that cannot come from the dataset's family."""
    y = np.asarray(dataset.outcome)
    if y.ndim != 1 or len(y) != len(dataset.male):
        raise InvalidParameterError("outcome", "a 1-D array aligned with the covariates", y.shape)
    if not np.all(np.isfinite(y)) or np.any(y < 0) or np.any(y != np.round(y)):
        raise InvalidParameterError("outcome", "non-negative integers", "non-integer values")
    if dataset.family == "binomial" and np.any(y > 1):
        raise InvalidParameterError("outcome", "0/1 for the binomial family", "values above 1")


def standardize_columns(X: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Centre and scale every non-intercept column of *X*.

    Returns:
        ``(X_std, T)`` where ``beta_original = T @ beta_std``.

    Raises:
        FitConvergenceError: If a covariate is constant (rank-deficient design).
    """
    n, p = X.shape
    means = X[:, 1:].mean(axis=0)
    scales = X[:, 1:].std(axis=0)
    if np.any(scales <= 0):
        raise FitConvergenceError("design matrix is rank deficient (constant covariate)")

    X_std = X.copy()
    X_std[:, 1:] = (X[:, 1:] - means) / scales

    T = np.zeros((p, p))
    T[0, 0] = 1.0
    T[0, 1:] = -means / scales
    T[1:, 1:] = np.diag(1.0 / scales)
    return X_std, T


def fit_glm(dataset, backend: str = "statsmodels", maxiter: int = 100) -> FitResult:
    """
    Fit the fixed-effects model to *dataset*.

    Args:
        dataset: ``SimulatedDataset`` (cluster columns are ignored).
        backend: ``"statsmodels"`` (default) or ``"sklearn"``.
        maxiter: Iteration limit passed to the solver.

    Returns:
        ``FitResult`` without random-effect fields.

    Raises:
        FitConvergenceError: Non-convergence, separation or non-finite estimates.
        InvalidParameterError: Malformed outcome or unknown backend.
    """
    check_outcome(dataset)
    X = design_matrix(dataset)
    y = np.asarray(dataset.outcome, dtype=float)

    if backend == "statsmodels":
        beta, se = _fit_glm_statsmodels(X, y, dataset.family, maxiter)
    elif backend == "sklearn":
        beta, se = _fit_glm_sklearn(X, y, dataset.family, maxiter)
    else:
        raise InvalidParameterError("backend", f"one of {list(GLM_BACKENDS)}", backend)

    if not np.all(np.isfinite(beta)):
        raise FitConvergenceError("non-finite coefficient estimates")

    return FitResult.from_coefficients(
        intercept=beta[0],
        sex_coefficient=beta[1],
        age_coefficient=beta[2],
        age_delta=dataset.coefficients.age_delta,
        family=dataset.family,
        method=f"glm-{backend}",
        sex_se=se[1],
        age_se=se[2],
    )


def _statsmodels_family(family: str):
    import statsmodels.api as sm

    if family == "binomial":
        return sm.families.Binomial()
    return sm.families.Poisson()


def _fit_glm_statsmodels(X: np.ndarray, y: np.ndarray, family: str, maxiter: int):
    """IRLS fit via ``statsmodels.api.GLM`` (canonical link)."""
    import statsmodels.api as sm
    from statsmodels.tools.sm_exceptions import (
        ConvergenceWarning,
        PerfectSeparationError,
        PerfectSeparationWarning,
    )

    if np.linalg.matrix_rank(X) < X.shape[1]:
        raise FitConvergenceError("design matrix is rank deficient (constant covariate)")

    model = sm.GLM(y, X, family=_statsmodels_family(family))
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        try:
            result = model.fit(maxiter=maxiter)
        except PerfectSeparationError as e:
            raise FitConvergenceError(f"perfect separation: {e}") from e
        except np.linalg.LinAlgError as e:
            raise FitConvergenceError(f"{type(e).__name__}: {e}") from e

    for w in caught:
        if issubclass(w.category, PerfectSeparationWarning):
            raise FitConvergenceError(f"perfect separation: {w.message}")
        if issubclass(w.category, ConvergenceWarning):
            raise FitConvergenceError(f"GLM did not converge: {w.message}")

    if not getattr(result, "converged", True):
        raise FitConvergenceError(f"GLM did not converge in {maxiter} iterations")

    return np.asarray(result.params, dtype=float), np.asarray(result.bse, dtype=float)


def _fit_glm_sklearn(X: np.ndarray, y: np.ndarray, family: str, maxiter: int):
    """Unpenalised fit via scikit-learn on standardised covariates.

    scikit-learn reports no standard errors; they are returned as NaN.
    """
    from sklearn.exceptions import ConvergenceWarning
    from sklearn.linear_model import LogisticRegression, PoissonRegressor

    X_std, T = standardize_columns(X)
    features = X_std[:, 1:]

    if family == "binomial":
        if np.unique(y).size < 2:
            raise FitConvergenceError("outcome has a single class")
        estimator = LogisticRegression(C=np.inf, solver="lbfgs", max_iter=maxiter)
    else:
        estimator = PoissonRegressor(alpha=0.0, max_iter=maxiter)

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        estimator.fit(features, y)

    for w in caught:
        if issubclass(w.category, ConvergenceWarning):
            raise FitConvergenceError(f"scikit-learn solver did not converge: {w.message}")

    coef = np.ravel(estimator.coef_)
    intercept = float(np.ravel(np.atleast_1d(estimator.intercept_))[0])
    beta_std = np.concatenate([[intercept], coef])
    return T @ beta_std, np.full(X.shape[1], np.nan)
