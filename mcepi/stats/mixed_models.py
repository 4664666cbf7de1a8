"""Random-intercept mixed models (GLMM) for MCEpi.

Routes a clustered dataset to the custom solver (``glmm_solver``,
adaptive Gauss-Hermite / Laplace, approximate REML by default) or to
statsmodels' variational Bayes mixed GLM (approximate alternative).

Both adapters return a ``FitResult`` carrying the fixed effects, the
estimated random-intercept standard deviation and the predicted
intercept of every cluster label.
"""

import warnings
from typing import Dict, Hashable, Tuple

import numpy as np

from ..core.results import FitResult
from ..errors import FitConvergenceError, InvalidParameterError
from .glm import check_outcome, design_matrix, standardize_columns
from .glmm_solver import SINGULAR_TOL, glmm_fit

GLMM_BACKENDS = ("custom", "statsmodels")


def cluster_design(dataset) -> Tuple[np.ndarray, int]:
    """Cluster index per row and the number of cluster labels.

    Raises:
        InvalidParameterError: If the dataset has no clusters.
        FitConvergenceError: If fewer than two distinct clusters are
            observed, which leaves the variance unidentifiable.
    """
    if not dataset.is_clustered:
        raise InvalidParameterError("cluster", "present for a mixed model", None)
    cluster_ids = np.asarray(dataset.cluster, dtype=np.intp)
    K = len(dataset.cluster_labels)
    n_observed = int(np.count_nonzero(np.bincount(cluster_ids, minlength=K)))
    if n_observed < 2:
        raise FitConvergenceError("random-intercept variance is not identifiable with fewer than two observed clusters")
    return cluster_ids, K


def _label_intercepts(dataset, values: np.ndarray) -> Dict[Hashable, float]:
    return {label: float(v) for label, v in zip(dataset.cluster_labels, values)}


def fit_glmm(
    dataset,
    backend: str = "custom",
    n_quadrature: int = 1,
    singular_tol: float = SINGULAR_TOL,
    reml: bool = True,
) -> FitResult:
    """
    Fit ``outcome ~ male + age + (1 | cluster)`` to *dataset*.

    Args:
        dataset: Clustered ``SimulatedDataset``.
        backend: ``"custom"`` (default, adaptive Gauss-Hermite) or
            ``"statsmodels"`` (variational Bayes).
        n_quadrature: Quadrature nodes for the custom backend (1 = Laplace).
        singular_tol: Estimated sd below this is a singular fit.
        reml: The custom backend defaults to approximate REML rather than
            maximum likelihood, which keeps the sd from being biased low
            with few clusters. ``False`` gives the plain ML estimate.

    Returns:
        ``FitResult`` with ``intercept_sd`` and ``cluster_intercepts`` set.

    Raises:
        FitConvergenceError: Non-convergence, non-finite estimates, a
            singular variance component or fewer than two observed clusters.
        InvalidParameterError: Malformed outcome, missing clusters, or an
            unknown backend.
    """
    check_outcome(dataset)
    cluster_ids, K = cluster_design(dataset)
    X = design_matrix(dataset)
    y = np.asarray(dataset.outcome, dtype=float)

    if backend == "custom":
        return _fit_glmm_custom(dataset, X, y, cluster_ids, K, n_quadrature, singular_tol, reml)
    elif backend == "statsmodels":
        return _fit_glmm_statsmodels(dataset, X, y, cluster_ids, K, singular_tol)
    raise InvalidParameterError("backend", f"one of {list(GLMM_BACKENDS)}", backend)


def _fit_glmm_custom(dataset, X, y, cluster_ids, K, n_quadrature, singular_tol, reml) -> FitResult:
    """(Restricted) maximum likelihood via ``glmm_solver.glmm_fit``."""
    result = glmm_fit(
        X,
        y,
        cluster_ids,
        K,
        family=dataset.family,
        n_quadrature=n_quadrature,
        singular_tol=singular_tol,
        reml=reml,
    )
    method = "glmm-laplace" if n_quadrature == 1 else f"glmm-agq{n_quadrature}"
    if reml:
        method += "-reml"
    return FitResult.from_coefficients(
        intercept=result.beta[0],
        sex_coefficient=result.beta[1],
        age_coefficient=result.beta[2],
        age_delta=dataset.coefficients.age_delta,
        family=dataset.family,
        method=method,
        sex_se=result.se_beta[1],
        age_se=result.se_beta[2],
        intercept_sd=result.sigma,
        cluster_intercepts=_label_intercepts(dataset, result.modes),
    )


def _fit_glmm_statsmodels(dataset, X, y, cluster_ids, K, singular_tol) -> FitResult:
    """Variational Bayes fit via statsmodels ``BayesMixedGLM``.

    The cluster indicator matrix is passed as a single variance component.
    Covariates are standardised for the fit and transformed back; posterior
    standard deviations of the fixed effects stand in for standard errors.
    """
    from scipy import sparse
    from statsmodels.genmod.bayes_mixed_glm import BinomialBayesMixedGLM, PoissonBayesMixedGLM
    from statsmodels.tools.sm_exceptions import ConvergenceWarning

    n = len(y)
    X_std, T = standardize_columns(X)
    exog_vc = sparse.csr_matrix((np.ones(n), (np.arange(n), cluster_ids)), shape=(n, K))
    ident = np.zeros(K, dtype=int)

    model_cls = BinomialBayesMixedGLM if dataset.family == "binomial" else PoissonBayesMixedGLM
    model = model_cls(y, X_std, exog_vc, ident, vcp_p=1.0, fe_p=2.0)

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        try:
            result = model.fit_vb()
        except (np.linalg.LinAlgError, ValueError) as e:
            raise FitConvergenceError(f"{type(e).__name__}: {e}") from e

    for w in caught:
        if issubclass(w.category, ConvergenceWarning) or "did not converge" in str(w.message):
            raise FitConvergenceError(f"variational fit did not converge: {w.message}")

    beta = T @ np.asarray(result.fe_mean, dtype=float)
    cov_std = np.diag(np.asarray(result.fe_sd, dtype=float) ** 2)
    se = np.sqrt(np.diag(T @ cov_std @ T.T))
    sigma = float(np.exp(result.vcp_mean[0]))

    if not (np.all(np.isfinite(beta)) and np.isfinite(sigma)):
        raise FitConvergenceError("non-finite GLMM estimates")
    if sigma < singular_tol:
        raise FitConvergenceError(f"singular random-intercept variance (sd estimate {sigma:.2e} < {singular_tol:g})")

    return FitResult.from_coefficients(
        intercept=beta[0],
        sex_coefficient=beta[1],
        age_coefficient=beta[2],
        age_delta=dataset.coefficients.age_delta,
        family=dataset.family,
        method="glmm-statsmodels-vb",
        sex_se=se[1],
        age_se=se[2],
        intercept_sd=sigma,
        cluster_intercepts=_label_intercepts(dataset, np.asarray(result.vc_mean, dtype=float)),
    )
