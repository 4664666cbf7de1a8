"""
Simulation execution for MCEpi.

This module contains the Monte Carlo loop: each replicate simulates one
dataset from its own random stream, fits the appropriate model, and the
successful fits are aggregated once every replicate has finished.
"""

import warnings
from typing import Callable, List, Optional, Sequence, Tuple

from ..errors import ExcessiveFitFailureError, FitConvergenceError, InvalidParameterError, MCEpiError
from ..stats.data_generation import simulate_dataset
from ..utils.validators import _validate_failure_rate, _validate_replicates, validate_config
from .coefficients import derive_coefficients
from .results import FitResult, MonteCarloResult, ReplicateFailure, ResultsProcessor, true_values
from .seeds import replicate_rng, resolve_base_seed


def fit_model(dataset, backend: Optional[str] = None, n_quadrature: int = 1, reml: bool = True) -> FitResult:
    """Fit the model matching *dataset*'s structure.

    Unclustered data gets a fixed-effects GLM; clustered data gets a
    random-intercept GLMM. ``backend=None`` picks the default for the path
    (``"statsmodels"`` for GLMs, ``"custom"`` for GLMMs). *n_quadrature* and
    *reml* only affect the custom GLMM solver, which estimates the variance
    by approximate REML unless ``reml=False`` asks for maximum likelihood.

    Raises:
        FitConvergenceError: The fit failed to converge or is degenerate, or
            fewer than two clusters were observed.
        InvalidParameterError: Malformed dataset or unknown backend.
    """
    if dataset.is_clustered:
        from ..stats.mixed_models import fit_glmm

        return fit_glmm(dataset, backend=backend or "custom", n_quadrature=n_quadrature, reml=reml)

    from ..stats.glm import fit_glm

    return fit_glm(dataset, backend=backend or "statsmodels")


def run_replicate(
    config,
    base_seed: int,
    index: int,
    backend: Optional[str] = None,
    n_quadrature: int = 1,
    keep_dataset: bool = False,
    reml: bool = True,
) -> Tuple[int, Optional[FitResult], Optional[str], Optional[object]]:
    """Simulate and fit replicate *index*.

    The replicate draws only from ``replicate_rng(base_seed, index)``, so
    its dataset and fit do not depend on any other replicate.

    Returns:
        ``(index, fit, failure_reason, dataset)``; *fit* is ``None`` and
        *failure_reason* is set when the fit raised ``FitConvergenceError``.
        *dataset* is ``None`` unless *keep_dataset* is true.
    """
    rng = replicate_rng(base_seed, index)
    dataset = simulate_dataset(config, rng=rng)
    kept = dataset if keep_dataset else None
    try:
        fit = fit_model(dataset, backend=backend, n_quadrature=n_quadrature, reml=reml)
    except FitConvergenceError as e:
        return index, None, e.reason, kept
    return index, fit, None, kept


class MonteCarloRunner:
    """Executes Monte Carlo replicates of the simulate-and-fit cycle.

    Each replicate owns an independent generator derived from the base
    seed and its index. Replicates whose fit fails are excluded and
    recorded; the run aborts with ``ExcessiveFitFailureError`` if the
    failure rate exceeds ``max_failure_rate``.
    """

    def __init__(
        self,
        n_replicates: int = 500,
        seed: Optional[int] = None,
        parallel: bool = False,
        n_cores: int = 1,
        max_failure_rate: float = 0.1,
        backend: Optional[str] = None,
        n_quadrature: int = 1,
        reml: bool = True,
    ):
        """Initialise the runner.

        Args:
            n_replicates: Number of Monte Carlo replicates.
            seed: Base seed; falls back to ``config.random_seed`` and then
                to OS entropy (the drawn value is recorded on the result).
            parallel: Run replicates with ``joblib`` (loky backend).
            n_cores: Worker count when *parallel* is true.
            max_failure_rate: Maximum acceptable proportion of failed
                replicates (0-1).
            backend: Fitting backend passed to ``fit_model``.
            n_quadrature: Quadrature nodes for the custom GLMM solver.
            reml: Approximate REML for the custom GLMM solver.
        """
        check = _validate_replicates(n_replicates)
        check.extend(_validate_failure_rate(max_failure_rate))
        check.raise_if_invalid()
        if not isinstance(n_quadrature, int) or isinstance(n_quadrature, bool) or n_quadrature < 1:
            raise InvalidParameterError("n_quadrature", "a positive integer", n_quadrature)

        self.n_replicates = n_replicates
        self.seed = seed
        self.parallel = parallel
        self.n_cores = n_cores
        self.max_failure_rate = max_failure_rate
        self.backend = backend
        self.n_quadrature = n_quadrature
        self.reml = reml

    def run(
        self,
        config,
        progress=None,
        cancel_check: Optional[Callable[[], bool]] = None,
        indices: Optional[Sequence[int]] = None,
        keep_datasets: bool = False,
    ) -> MonteCarloResult:
        """Run every replicate for *config* and summarise the estimates.

        Args:
            config: ``SimulationConfig``; validated before any draw.
            progress: Optional ``ProgressReporter`` (advanced by 1 per
                replicate).
            cancel_check: Optional callable returning ``True`` to abort.
            indices: Replicate indices to run (default ``range(n_replicates)``).
            keep_datasets: Keep each simulated dataset on the result.

        Returns:
            ``MonteCarloResult``.

        Raises:
            InvalidParameterError: Invalid configuration.
            RandomSourceError: Unusable seed.
            ExcessiveFitFailureError: Failure rate above ``max_failure_rate``
                or no replicate succeeded.
            SimulationCancelled: *cancel_check* returned ``True``.
        """
        validate_config(config).raise_if_invalid()
        coefficients = derive_coefficients(config)
        base_seed = resolve_base_seed(self.seed if self.seed is not None else config.random_seed)
        indices = list(range(self.n_replicates)) if indices is None else [int(i) for i in indices]

        if self.parallel and self.n_cores > 1 and len(indices) > 1:
            outcomes = self._run_parallel(config, base_seed, indices, keep_datasets, progress, cancel_check)
        else:
            outcomes = self._run_sequential(config, base_seed, indices, keep_datasets, progress, cancel_check)

        outcomes.sort(key=lambda item: item[0])
        fits: List[FitResult] = []
        fit_indices: List[int] = []
        failures: List[ReplicateFailure] = []
        datasets = {} if keep_datasets else None
        for index, fit, reason, dataset in outcomes:
            if fit is None:
                failures.append(ReplicateFailure(index=index, reason=reason))
            else:
                fits.append(fit)
                fit_indices.append(index)
            if datasets is not None:
                datasets[index] = dataset

        self._check_failures(failures, len(indices))

        summary = ResultsProcessor().summarize(fits, true_values(config))
        return MonteCarloResult(
            config=config,
            coefficients=coefficients,
            base_seed=base_seed,
            n_replicates=len(indices),
            fits=fits,
            replicate_indices=fit_indices,
            failures=failures,
            summary=summary,
            datasets=datasets,
        )

    def _run_sequential(self, config, base_seed, indices, keep_datasets, progress, cancel_check):
        from ..progress import SimulationCancelled

        outcomes = []
        for index in indices:
            if cancel_check is not None and cancel_check():
                raise SimulationCancelled("Simulation cancelled by user")
            outcome = run_replicate(config, base_seed, index, self.backend, self.n_quadrature, keep_datasets, self.reml)
            outcomes.append(outcome)
            if progress is not None:
                progress.advance(1, failed=int(outcome[1] is None))
        return outcomes

    def _run_parallel(self, config, base_seed, indices, keep_datasets, progress, cancel_check):
        """Run replicates on a loky pool; fall back to sequential if the pool fails."""
        from ..progress import SimulationCancelled

        try:
            from joblib import Parallel, delayed
        except ImportError:
            warnings.warn("joblib not available. Continuing with sequential processing.")
            return self._run_sequential(config, base_seed, indices, keep_datasets, progress, cancel_check)

        outcomes = []
        try:
            results = Parallel(
                n_jobs=self.n_cores,
                backend="loky",
                verbose=0,
                return_as="generator",
            )(
                delayed(run_replicate)(config, base_seed, index, self.backend, self.n_quadrature, keep_datasets, self.reml)
                for index in indices
            )
            for outcome in results:
                if cancel_check is not None and cancel_check():
                    raise SimulationCancelled("Simulation cancelled by user")
                outcomes.append(outcome)
                if progress is not None:
                    progress.advance(1, failed=int(outcome[1] is None))
        except Exception as e:
            if isinstance(e, (SimulationCancelled, MCEpiError)):
                raise
            warnings.warn(f"Parallel execution failed ({e}). Falling back to sequential.")
            done = {outcome[0] for outcome in outcomes}
            remaining = [index for index in indices if index not in done]
            outcomes.extend(
                self._run_sequential(config, base_seed, remaining, keep_datasets, progress, cancel_check)
            )
        return outcomes

    def _check_failures(self, failures: List[ReplicateFailure], n_total: int):
        n_failed = len(failures)
        if n_failed == 0:
            return
        failed_pct = n_failed / n_total
        if n_failed == n_total or failed_pct > self.max_failure_rate:
            raise ExcessiveFitFailureError(n_failed, n_total, self.max_failure_rate, failures)

        shown = ", ".join(str(f.index) for f in failures[:10])
        if n_failed > 10:
            shown += ", ..."
        warnings.warn(f"{n_failed} replicates failed to fit ({failed_pct:.1%}) and were excluded: [{shown}]")
