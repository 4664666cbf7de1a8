"""
Main MCEpi class: fluent interface to the simulate-and-recover workflow.

Example:
    >>> from mcepi import MCEpi
    >>>
    >>> model = MCEpi()
    >>> model.set_effects(odds_ratio_sex=1.05, odds_ratio_age=1.10, age_delta=15)
    >>> model.set_baseline(reference_prevalence=0.25, reference_age=50)
    >>> result = model.run_replicates()
    >>> result.summary_frame()
"""

import warnings
from typing import Callable, Hashable, Optional, Sequence, Tuple

from .core.coefficients import DerivedCoefficients, derive_coefficients
from .core.config import SimulationConfig
from .core.results import FitResult, MonteCarloResult
from .core.seeds import check_seed
from .core.simulation import MonteCarloRunner, fit_model
from .errors import InvalidParameterError
from .stats.data_generation import SimulatedDataset, simulate_dataset
from .stats.glm import GLM_BACKENDS
from .stats.mixed_models import GLMM_BACKENDS
from .utils.validators import (
    _validate_failure_rate,
    _validate_parallel_settings,
    _validate_replicates,
    validate_config,
)


class MCEpi:
    """Monte Carlo simulate-and-recover for epidemiological regression.

    Holds a ``SimulationConfig`` plus runner settings. Every ``set_*``
    method validates its inputs immediately, leaves the model unchanged on
    error, and returns ``self`` for method chaining.

    Attributes:
        seed: Base random seed (default: 2137). ``None`` draws a fresh
            seed from OS entropy on every run.
        n_replicates: Number of Monte Carlo replicates (default: 500).
        parallel: Run replicates in parallel with joblib (default: False).
        n_cores: Worker count for parallel runs.
        max_failed_replicates: Maximum acceptable proportion of replicates
            whose fit fails (default: 0.1).
        glm_backend: Backend for unclustered fits (default: ``"statsmodels"``).
        glmm_backend: Backend for clustered fits (default: ``"custom"``).
        n_quadrature: Gauss-Hermite nodes for the custom GLMM solver
            (default: 1, the Laplace approximation).
        reml: Use approximate REML in the custom GLMM solver (default: True).

    Example:
        >>> model = MCEpi()
        >>> model.set_clusters(["A", "B", "C", "D", "E"], weights=[1, 2, 2, 3, 3], intercept_sd=2.0)
        >>> model.set_replicates(200)
        >>> result = model.run_replicates()
        >>> result.summary["intercept_sd"].empirical_mean
    """

    def __init__(self, family: str = "binomial"):
        """Create a model with the default teaching scenario.

        Args:
            family: ``"binomial"`` (logistic, default) or ``"poisson"``.
        """
        self._config = SimulationConfig().replace(family=family)
        validate_config(self._config).raise_if_invalid()

        self.seed: Optional[int] = 2137
        self.n_replicates = 500
        self.parallel = False
        self.n_cores = 1
        self.max_failed_replicates = 0.1
        self.glm_backend = "statsmodels"
        self.glmm_backend = "custom"
        self.n_quadrature = 1
        self.reml = True

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def config(self) -> SimulationConfig:
        """Current configuration, with ``random_seed`` set to the model seed."""
        return self._config.replace(random_seed=self.seed)

    @property
    def coefficients(self) -> DerivedCoefficients:
        """Linear-predictor coefficients implied by the current configuration."""
        return derive_coefficients(self._config)

    @property
    def family(self) -> str:
        return self._config.family

    @property
    def backend(self) -> str:
        """Backend used for the current (clustered or unclustered) path."""
        return self.glmm_backend if self._config.is_clustered else self.glm_backend

    def _update(self, **changes):
        candidate = self._config.replace(**changes)
        validate_config(candidate).raise_if_invalid()
        self._config = candidate
        return self

    # =========================================================================
    # Scenario configuration
    # =========================================================================

    def set_family(self, family: str):
        """Set the outcome family.

        Args:
            family: ``"binomial"`` (binary outcome, logit link) or
                ``"poisson"`` (count outcome, log link). For the Poisson
                family ``reference_prevalence`` is read as a rate.

        Returns:
            self: For method chaining.
        """
        return self._update(family=family)

    def set_population(
        self,
        sample_size: Optional[int] = None,
        male_probability: Optional[float] = None,
        age_range: Optional[Tuple[float, float]] = None,
        age_sd_quantile: Optional[float] = None,
    ):
        """Set population size and covariate distributions.

        Args:
            sample_size: Individuals per simulated dataset.
            male_probability: Probability of male sex, in [0, 1].
            age_range: ``(min, max)`` age range.
            age_sd_quantile: Share of the normal age distribution placed
                inside *age_range* (default 0.99).

        Returns:
            self: For method chaining.
        """
        changes = {
            "sample_size": sample_size,
            "male_probability": male_probability,
            "age_range": tuple(age_range) if age_range is not None else None,
            "age_sd_quantile": age_sd_quantile,
        }
        return self._update(**{k: v for k, v in changes.items() if v is not None})

    def set_effects(
        self,
        odds_ratio_sex: Optional[float] = None,
        odds_ratio_age: Optional[float] = None,
        age_delta: Optional[float] = None,
    ):
        """Set the true effects.

        Args:
            odds_ratio_sex: Odds ratio (rate ratio for Poisson) of male vs female.
            odds_ratio_age: Odds ratio per *age_delta* years.
            age_delta: Age step that *odds_ratio_age* refers to.

        Returns:
            self: For method chaining.
        """
        changes = {"odds_ratio_sex": odds_ratio_sex, "odds_ratio_age": odds_ratio_age, "age_delta": age_delta}
        return self._update(**{k: v for k, v in changes.items() if v is not None})

    def set_baseline(self, reference_prevalence: Optional[float] = None, reference_age: Optional[float] = None):
        """Set the prevalence (or rate) among women at the reference age.

        Returns:
            self: For method chaining.
        """
        changes = {"reference_prevalence": reference_prevalence, "reference_age": reference_age}
        return self._update(**{k: v for k, v in changes.items() if v is not None})

    def set_clusters(
        self,
        labels: Sequence[Hashable],
        weights: Optional[Sequence[float]] = None,
        intercept_sd: float = 1.0,
    ):
        """Enable clustering (cities) with a shared random intercept.

        Args:
            labels: Distinct cluster identifiers.
            weights: Relative cluster sizes, one per label (uniform if omitted).
            intercept_sd: Standard deviation of the cluster random intercept.

        Returns:
            self: For method chaining.
        """
        return self._update(
            cluster_labels=tuple(labels),
            cluster_weights=tuple(weights) if weights is not None else None,
            cluster_intercept_sd=intercept_sd,
        )

    def clear_clusters(self):
        """Return to the unclustered (fixed-effects only) scenario."""
        return self._update(cluster_labels=None, cluster_weights=None, cluster_intercept_sd=0.0)

    # =========================================================================
    # Runner configuration
    # =========================================================================

    def set_seed(self, seed: Optional[int] = None):
        """Set random seed for reproducibility.

        Args:
            seed: Non-negative integer, or ``None`` to draw a fresh base
                seed on every run.

        Returns:
            self: For method chaining.

        Raises:
            RandomSourceError: If *seed* is not a non-negative integer.
        """
        self.seed = check_seed(seed)
        if seed is not None:
            print(f"Seed set to: {seed}")
        else:
            print("Random seeding enabled")
        return self

    def set_replicates(self, n_replicates: int):
        """Set the number of Monte Carlo replicates.

        Returns:
            self: For method chaining.
        """
        result = _validate_replicates(n_replicates)
        result.raise_if_invalid()
        for message in result.warnings:
            warnings.warn(message, stacklevel=2)
        self.n_replicates = int(n_replicates)
        return self

    def set_parallel(self, enable: bool = True, n_cores: Optional[int] = None):
        """Enable or disable parallel replicates.

        Requires ``joblib`` to be installed. Falls back to sequential
        processing with a warning if ``joblib`` is unavailable.

        Args:
            enable: ``True`` for parallel, ``False`` for sequential.
            n_cores: Number of worker processes. Defaults to
                ``cpu_count // 2``.

        Returns:
            self: For method chaining.
        """
        if enable is False:
            self.parallel, self.n_cores = False, 1
            return self

        try:
            import joblib  # noqa: F401
        except ImportError:
            warnings.warn("joblib not available. Install with: pip install joblib. Continuing with sequential processing.")
            self.parallel = False
            return self

        settings, result = _validate_parallel_settings(enable, n_cores)
        result.raise_if_invalid()
        for message in result.warnings:
            warnings.warn(message, stacklevel=2)
        self.parallel, self.n_cores = settings
        return self

    def set_backend(
        self,
        glm: Optional[str] = None,
        glmm: Optional[str] = None,
        n_quadrature: Optional[int] = None,
        reml: Optional[bool] = None,
    ):
        """Choose the fitting backends.

        Args:
            glm: ``"statsmodels"`` or ``"sklearn"`` for unclustered data.
            glmm: ``"custom"`` (maximum likelihood) or ``"statsmodels"``
                (variational Bayes) for clustered data.
            n_quadrature: Gauss-Hermite nodes for the custom solver
                (1 = Laplace approximation).
            reml: Restricted (``True``) or plain (``False``) maximum
                likelihood in the custom solver.

        Returns:
            self: For method chaining.
        """
        if glm is not None and glm not in GLM_BACKENDS:
            raise InvalidParameterError("glm", f"one of {list(GLM_BACKENDS)}", glm)
        if glmm is not None and glmm not in GLMM_BACKENDS:
            raise InvalidParameterError("glmm", f"one of {list(GLMM_BACKENDS)}", glmm)
        if n_quadrature is not None and (not isinstance(n_quadrature, int) or isinstance(n_quadrature, bool) or n_quadrature < 1):
            raise InvalidParameterError("n_quadrature", "a positive integer", n_quadrature)

        if glm is not None:
            self.glm_backend = glm
        if glmm is not None:
            self.glmm_backend = glmm
        if n_quadrature is not None:
            self.n_quadrature = n_quadrature
        if reml is not None:
            self.reml = bool(reml)
        return self

    def set_max_failed_replicates(self, percentage: float):
        """Set the maximum acceptable proportion of failed fits (0-1).

        Returns:
            self: For method chaining.
        """
        _validate_failure_rate(percentage).raise_if_invalid()
        self.max_failed_replicates = float(percentage)
        return self

    # =========================================================================
    # Simulation and fitting
    # =========================================================================

    def simulate(self, seed: Optional[int] = None) -> SimulatedDataset:
        """Simulate one dataset.

        Args:
            seed: Seed for this dataset; defaults to the model seed.

        Returns:
            ``SimulatedDataset``.
        """
        config = self._config.replace(random_seed=self.seed if seed is None else seed)
        return simulate_dataset(config)

    def fit(self, dataset: Optional[SimulatedDataset] = None) -> FitResult:
        """Fit the model matching *dataset* (a fresh simulation if omitted)."""
        if dataset is None:
            dataset = self.simulate()
        backend = self.glmm_backend if dataset.is_clustered else self.glm_backend
        return fit_model(dataset, backend=backend, n_quadrature=self.n_quadrature, reml=self.reml)

    def run_replicates(
        self,
        progress_callback=None,
        cancel_check: Optional[Callable[[], bool]] = None,
        keep_datasets: bool = False,
    ) -> MonteCarloResult:
        """
        Run the Monte Carlo simulate-and-fit loop.

        Args:
            progress_callback: Progress reporting control:
                - ``None`` / ``False`` (default): no progress output.
                - ``True``: ``PrintReporter`` on stderr.
                - callable ``(current, total)``: custom callback.
            cancel_check: Optional callable returning ``True`` to abort.
            keep_datasets: Keep every simulated dataset on the result.

        Returns:
            ``MonteCarloResult`` with per-replicate fits and the summary.

        Raises:
            ExcessiveFitFailureError: Too many replicates failed to fit.
            SimulationCancelled: *cancel_check* returned ``True``.
        """
        from .progress import PrintReporter, ProgressReporter, compute_total_replicates

        if progress_callback is True:
            effective_cb = PrintReporter()
        elif progress_callback is None or progress_callback is False:
            effective_cb = None
        else:
            effective_cb = progress_callback

        reporter = None
        if effective_cb is not None:
            reporter = ProgressReporter(compute_total_replicates(self.n_replicates), effective_cb)
            reporter.start()

        runner = MonteCarloRunner(
            n_replicates=self.n_replicates,
            seed=self.seed,
            parallel=self.parallel,
            n_cores=self.n_cores,
            max_failure_rate=self.max_failed_replicates,
            backend=self.backend,
            n_quadrature=self.n_quadrature,
            reml=self.reml,
        )
        result = runner.run(self.config, progress=reporter, cancel_check=cancel_check, keep_datasets=keep_datasets)

        if reporter is not None:
            reporter.finish()
        return result
