"""
Tests for parallel execution in MCEpi.
"""

import pytest

from tests.config import SEED


def _joblib_available():
    """Check if joblib is available."""
    import importlib.util

    return importlib.util.find_spec("joblib") is not None


pytestmark = pytest.mark.skipif(not _joblib_available(), reason="joblib not installed")


class TestParallelExecution:
    """Parallel replicates must reproduce the sequential run exactly."""

    def test_parallel_results_match_sequential(self, small_config):
        from mcepi import MonteCarloRunner

        sequential = MonteCarloRunner(n_replicates=8, seed=SEED).run(small_config)
        parallel = MonteCarloRunner(n_replicates=8, seed=SEED, parallel=True, n_cores=2).run(small_config)

        assert parallel.replicate_indices == sequential.replicate_indices
        for seq_fit, par_fit in zip(sequential.fits, parallel.fits):
            assert seq_fit == par_fit

    def test_parallel_via_model(self, suppress_output):
        from mcepi import MCEpi

        model = MCEpi().set_population(sample_size=300)
        with pytest.warns(UserWarning):
            model.set_replicates(6)

        model.set_parallel(False)
        sequential = model.run_replicates()

        model.set_parallel(True, n_cores=2)
        parallel = model.run_replicates()

        assert sequential.to_frame().equals(parallel.to_frame())

    def test_parallel_progress(self, small_config):
        from mcepi import MonteCarloRunner
        from mcepi.progress import ProgressReporter

        calls = []
        reporter = ProgressReporter(6, lambda c, t: calls.append(c), update_every=1)
        MonteCarloRunner(n_replicates=6, seed=SEED, parallel=True, n_cores=2).run(small_config, progress=reporter)
        assert calls[-1] == 6

    def test_invalid_core_count(self):
        from mcepi import InvalidParameterError, MCEpi

        with pytest.raises(InvalidParameterError):
            MCEpi().set_parallel(True, n_cores=0)
