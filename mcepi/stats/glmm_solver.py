"""Custom GLMM solver for random-intercept logistic and Poisson models.

Implements maximum-likelihood estimation of

    g(E[y_ij | b_j]) = x_ij' beta + b_j,    b_j ~ N(0, sigma^2)

by adaptive Gauss-Hermite quadrature (AGQ), following the approach of
lme4's ``glmer`` (Bates et al. 2015; Pinheiro & Bates 1995). With a single
random intercept the marginal likelihood factorises into one-dimensional
integrals, one per cluster:

    L_j = ∫ prod_i f(y_ij | eta_ij + b) phi(b; 0, sigma^2) db

Each integrand is centred on its conditional mode ``b_j`` (found by
vectorised Newton iterations across all clusters at once) and scaled by
the conditional curvature. ``n_quadrature = 1`` is the Laplace
approximation.

With ``reml=True`` the fixed effects are integrated out as well (Laplace
approximation over ``beta`` with a flat prior, as glmmTMB does), which
adds ``-0.5 log det S`` to the objective, ``S`` being the Schur
complement of the joint ``(beta, b)`` information. This removes the
downward bias of the ML variance estimate when there are few clusters.

The outer optimisation over ``(beta, log sigma)`` is derivative-free
(Nelder-Mead, Powell retry), as in glmer's default optimiser chain.
Fixed-effect columns are standardised internally and the estimates are
transformed back, which keeps the simplex well conditioned when age is
measured in years.
"""

import math
import warnings
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from scipy.optimize import minimize
from scipy.special import logsumexp

from ..errors import FitConvergenceError
from .distributions import inverse_link, link, log_density, variance_weights
from .glm import standardize_columns

FLOAT_NEAR_ZERO = 1e-15
LOG_SIGMA_BOUNDS = (math.log(1e-6), math.log(1e3))
MAX_NEWTON_STEP = 2.0
SINGULAR_TOL = 1e-4
LOG_2PI = math.log(2.0 * math.pi)


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------


@dataclass
class GLMMResult:
    """Result of a random-intercept GLMM fit (original covariate scale)."""

    beta: np.ndarray  # (p,) fixed effects incl. intercept
    sigma: float  # random intercept standard deviation
    modes: np.ndarray  # (K,) conditional modes of the random intercepts
    mode_sd: np.ndarray  # (K,) conditional standard deviations
    cov_beta: np.ndarray  # (p, p) covariance of fixed effects
    se_beta: np.ndarray  # (p,) standard errors
    log_likelihood: float  # at optimum (restricted when reml)
    converged: bool
    n_quadrature: int
    reml: bool
    method: str  # optimiser that converged
    n_evaluations: int


@dataclass
class _Problem:
    X: np.ndarray  # (n, p) standardised design
    y: np.ndarray  # (n,)
    cluster_ids: np.ndarray  # (n,) int
    K: int
    family: str
    nodes: np.ndarray  # (q,) Gauss-Hermite nodes
    log_weights: np.ndarray  # (q,) log weights


# ---------------------------------------------------------------------------
# Inner problem: conditional modes
# ---------------------------------------------------------------------------


def conditional_modes(
    eta_fixed: np.ndarray,
    y: np.ndarray,
    cluster_ids: np.ndarray,
    K: int,
    sigma: float,
    family: str,
    start: Optional[np.ndarray] = None,
    tol: float = 1e-10,
    maxiter: int = 100,
) -> Tuple[np.ndarray, np.ndarray]:
    """Newton iterations for the per-cluster mode of ``log f(y | b) + log phi(b)``.

    All clusters are updated simultaneously; per-cluster sums are
    ``np.bincount`` reductions. Steps are clipped to ``MAX_NEWTON_STEP``
    so early iterations cannot overshoot into overflow.

    Returns:
        ``(modes, curvature)`` where *curvature* is the negative second
        derivative at the mode (always positive).
    """
    precision = 1.0 / (sigma * sigma)
    b = np.zeros(K) if start is None else start.copy()

    for _ in range(maxiter):
        mu = inverse_link(eta_fixed + b[cluster_ids], family)
        grad = np.bincount(cluster_ids, weights=y - mu, minlength=K) - b * precision
        curvature = np.bincount(cluster_ids, weights=variance_weights(mu, family), minlength=K) + precision
        step = np.clip(grad / curvature, -MAX_NEWTON_STEP, MAX_NEWTON_STEP)
        b = b + step
        if np.max(np.abs(step)) < tol:
            break

    mu = inverse_link(eta_fixed + b[cluster_ids], family)
    curvature = np.bincount(cluster_ids, weights=variance_weights(mu, family), minlength=K) + precision
    return b, curvature


# ---------------------------------------------------------------------------
# Marginal likelihood
# ---------------------------------------------------------------------------


def marginal_log_likelihood(
    beta: np.ndarray,
    log_sigma: float,
    problem: _Problem,
    start_modes: Optional[np.ndarray] = None,
) -> Tuple[float, np.ndarray, np.ndarray]:
    """AGQ approximation of the marginal log-likelihood.

    For cluster *j* with mode ``b_j`` and scale ``s_j = curvature_j^(-1/2)``::

        L_j ≈ sqrt(2) s_j sum_k w_k exp(z_k^2) f(y_j | b_j + sqrt(2) s_j z_k) phi(...)

    Returns:
        ``(log_likelihood, modes, curvature)``.
    """
    sigma = math.exp(log_sigma)
    eta_fixed = problem.X @ beta
    modes, curvature = conditional_modes(
        eta_fixed, problem.y, problem.cluster_ids, problem.K, sigma, problem.family, start=start_modes
    )
    scale = 1.0 / np.sqrt(curvature)

    log_terms = np.empty((len(problem.nodes), problem.K))
    for k, z in enumerate(problem.nodes):
        b_k = modes + math.sqrt(2.0) * scale * z
        ll = np.bincount(
            problem.cluster_ids,
            weights=log_density(problem.y, eta_fixed + b_k[problem.cluster_ids], problem.family),
            minlength=problem.K,
        )
        log_prior = -0.5 * LOG_2PI - log_sigma - 0.5 * (b_k / sigma) ** 2
        log_terms[k] = problem.log_weights[k] + z * z + ll + log_prior

    log_lik_j = math.log(math.sqrt(2.0)) + np.log(scale) + logsumexp(log_terms, axis=0)
    return float(np.sum(log_lik_j)), modes, curvature


def reml_adjustment(beta: np.ndarray, problem: _Problem, modes: np.ndarray, curvature: np.ndarray) -> float:
    """Laplace correction for integrating the fixed effects out.

    ``S = X'WX - sum_j u_j u_j' / c_j`` with ``u_j = sum_{i in j} w_i x_i``
    and ``c_j`` the conditional curvature; returns
    ``p/2 log(2 pi) - 1/2 log det S`` (``-inf`` if ``S`` is not positive
    definite).
    """
    X = problem.X
    p = X.shape[1]
    mu = inverse_link(X @ beta + modes[problem.cluster_ids], problem.family)
    w = variance_weights(mu, problem.family)

    XtWX = (X * w[:, None]).T @ X
    U = np.column_stack([np.bincount(problem.cluster_ids, weights=w * X[:, k], minlength=problem.K) for k in range(p)])
    S = XtWX - (U / curvature[:, None]).T @ U

    sign, logdet = np.linalg.slogdet(S)
    if sign <= 0:
        return -np.inf
    return 0.5 * p * LOG_2PI - 0.5 * logdet


# ---------------------------------------------------------------------------
# Fitting
# ---------------------------------------------------------------------------


def _starting_values(X_std: np.ndarray, y: np.ndarray, family: str) -> np.ndarray:
    """Fixed-effect start from an ordinary GLM on the standardised design."""
    import statsmodels.api as sm
    from statsmodels.tools.sm_exceptions import PerfectSeparationError

    sm_family = sm.families.Binomial() if family == "binomial" else sm.families.Poisson()
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            start = np.asarray(sm.GLM(y, X_std, family=sm_family).fit(maxiter=50).params, dtype=float)
    except (PerfectSeparationError, np.linalg.LinAlgError, ValueError):
        start = np.zeros(X_std.shape[1])
        mean_y = float(np.clip(np.mean(y), 1e-3, 1 - 1e-3 if family == "binomial" else np.inf))
        start[0] = float(link(mean_y, family))

    if not np.all(np.isfinite(start)):
        start = np.zeros(X_std.shape[1])
    return start


def _numeric_hessian(objective, x: np.ndarray, step: float = 1e-4) -> np.ndarray:
    """Central-difference Hessian of *objective* at *x*."""
    d = len(x)
    H = np.empty((d, d))
    f0 = objective(x)
    for i in range(d):
        ei = np.zeros(d)
        ei[i] = step
        H[i, i] = (objective(x + ei) - 2.0 * f0 + objective(x - ei)) / (step * step)
        for j in range(i + 1, d):
            ej = np.zeros(d)
            ej[j] = step
            value = (
                objective(x + ei + ej) - objective(x + ei - ej) - objective(x - ei + ej) + objective(x - ei - ej)
            ) / (4.0 * step * step)
            H[i, j] = value
            H[j, i] = value
    return H


def glmm_fit(
    X: np.ndarray,
    y: np.ndarray,
    cluster_ids: np.ndarray,
    K: int,
    family: str = "binomial",
    n_quadrature: int = 1,
    singular_tol: float = SINGULAR_TOL,
    reml: bool = True,
    maxiter: int = 4000,
    compute_se: bool = True,
) -> GLMMResult:
    """
    Fit a random-intercept GLMM by (restricted) maximum likelihood.

    Args:
        X: ``(n, p)`` design matrix whose first column is the intercept.
        y: ``(n,)`` binary or count response.
        cluster_ids: ``(n,)`` cluster index in ``[0, K)``.
        K: Number of clusters (empty clusters are allowed).
        family: ``"binomial"`` or ``"poisson"``.
        n_quadrature: Gauss-Hermite nodes per cluster (1 = Laplace).
        singular_tol: Estimated ``sigma`` below this is treated as a
            singular (degenerate) variance component.
        reml: Integrate the fixed effects out (approximate REML). With
            ``False`` the plain ML estimate is returned, which
            underestimates ``sigma`` when there are few clusters.
        maxiter: Iteration limit for each optimiser attempt.
        compute_se: Whether to compute Wald standard errors from a
            numerical Hessian.

    Returns:
        ``GLMMResult`` on the original covariate scale.

    Raises:
        FitConvergenceError: If no optimiser converges, the estimates are
            non-finite, or the variance component is singular.
    """
    cluster_ids = np.asarray(cluster_ids, dtype=np.intp)
    y = np.asarray(y, dtype=float)
    if n_quadrature < 1:
        raise ValueError("n_quadrature must be at least 1")
    if np.count_nonzero(np.bincount(cluster_ids, minlength=K)) < 2:
        raise FitConvergenceError("random-intercept variance is not identifiable with fewer than two clusters")

    X_std, T = standardize_columns(np.asarray(X, dtype=float))
    nodes, weights = np.polynomial.hermite.hermgauss(n_quadrature)
    problem = _Problem(X=X_std, y=y, cluster_ids=cluster_ids, K=K, family=family, nodes=nodes, log_weights=np.log(weights))
    p = X_std.shape[1]

    # Warm-start the inner Newton iterations from the last evaluated modes.
    state = {"modes": None, "n_evals": 0}

    def objective(theta):
        state["n_evals"] += 1
        with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
            ll, modes, curvature = marginal_log_likelihood(theta[:p], theta[p], problem, start_modes=state["modes"])
            if reml and np.isfinite(ll):
                ll += reml_adjustment(theta[:p], problem, modes, curvature)
        if not np.isfinite(ll):
            return np.inf
        state["modes"] = modes
        return -ll

    beta0 = _starting_values(X_std, y, family)
    x0 = np.concatenate([beta0, [math.log(0.5)]])
    bounds = [(None, None)] * p + [LOG_SIGMA_BOUNDS]
    simplex = np.vstack([x0] + [x0 + 0.2 * np.eye(p + 1)[i] for i in range(p + 1)])

    # Retry strategy: Nelder-Mead → Powell from the best point so far.
    attempts = [
        ("Nelder-Mead", {"maxiter": maxiter, "xatol": 1e-6, "fatol": 1e-8, "initial_simplex": simplex}),
        ("Powell", {"maxiter": maxiter, "xtol": 1e-8, "ftol": 1e-10}),
    ]

    result = None
    converged = False
    method_used = None
    failure_reason = None
    x_start = x0
    for method, options in attempts:
        try:
            result = minimize(objective, x_start, method=method, bounds=bounds, options=options)
        except (np.linalg.LinAlgError, FloatingPointError, ValueError) as e:
            failure_reason = f"{type(e).__name__}: {e}"
            continue

        if result.success and np.all(np.isfinite(result.x)) and np.isfinite(result.fun):
            converged = True
            method_used = method
            break

        failure_reason = f"{method}: {result.message}"
        if np.all(np.isfinite(result.x)):
            x_start = result.x
            options.pop("initial_simplex", None)

    if not converged:
        raise FitConvergenceError(f"GLMM did not converge ({failure_reason or 'unknown failure'})")

    theta = result.x
    sigma = math.exp(theta[p])
    if sigma < singular_tol:
        raise FitConvergenceError(f"singular random-intercept variance (sd estimate {sigma:.2e} < {singular_tol:g})")

    log_lik, modes, curvature = marginal_log_likelihood(theta[:p], theta[p], problem)
    if reml:
        log_lik += reml_adjustment(theta[:p], problem, modes, curvature)
    beta = T @ theta[:p]

    cov_beta = np.full((p, p), np.nan)
    if compute_se:
        with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
            H = _numeric_hessian(objective, theta)
        if np.all(np.isfinite(H)):
            try:
                cov_theta = np.linalg.inv(H)
            except np.linalg.LinAlgError:
                cov_theta = None
            if cov_theta is not None and np.all(np.diag(cov_theta) > FLOAT_NEAR_ZERO):
                cov_beta = T @ cov_theta[:p, :p] @ T.T

    with np.errstate(invalid="ignore"):
        se_beta = np.sqrt(np.diag(cov_beta))

    if not (np.all(np.isfinite(beta)) and np.isfinite(log_lik)):
        raise FitConvergenceError("non-finite GLMM estimates")

    return GLMMResult(
        beta=beta,
        sigma=sigma,
        modes=modes,
        mode_sd=1.0 / np.sqrt(curvature),
        cov_beta=cov_beta,
        se_beta=se_beta,
        log_likelihood=log_lik,
        converged=True,
        n_quadrature=n_quadrature,
        reml=reml,
        method=method_used,
        n_evaluations=state["n_evals"],
    )
