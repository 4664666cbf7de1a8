"""
Tests for fixed-effects GLM fitting.
"""

import dataclasses
import math

import numpy as np
import pytest

from mcepi import FitConvergenceError, InvalidParameterError, simulate_dataset
from mcepi.stats.glm import design_matrix, fit_glm, standardize_columns


@pytest.fixture
def large_dataset(base_config):
    config = base_config.replace(sample_size=20000, odds_ratio_sex=1.5, odds_ratio_age=2.0)
    return simulate_dataset(config)


class TestDesignMatrix:
    def test_columns(self, small_config):
        dataset = simulate_dataset(small_config)
        X = design_matrix(dataset)
        assert X.shape == (len(dataset), 3)
        np.testing.assert_array_equal(X[:, 0], 1.0)
        np.testing.assert_array_equal(X[:, 1], dataset.male)
        np.testing.assert_array_equal(X[:, 2], dataset.age)


class TestStandardizeColumns:
    def test_back_transform(self, rng):
        X = np.column_stack([np.ones(50), rng.integers(0, 2, 50), rng.normal(64, 7, 50)])
        X_std, T = standardize_columns(X)
        beta_std = np.array([0.3, -0.2, 0.7])

        np.testing.assert_allclose(X_std @ beta_std, X @ (T @ beta_std))

    def test_standardized_columns(self, rng):
        X = np.column_stack([np.ones(100), rng.normal(5, 3, 100)])
        X_std, _ = standardize_columns(X)
        assert X_std[:, 1].mean() == pytest.approx(0.0, abs=1e-12)
        assert X_std[:, 1].std() == pytest.approx(1.0)
        np.testing.assert_array_equal(X_std[:, 0], 1.0)

    def test_constant_covariate(self):
        X = np.column_stack([np.ones(10), np.zeros(10), np.arange(10.0)])
        with pytest.raises(FitConvergenceError, match="rank deficient"):
            standardize_columns(X)


class TestFitGLM:
    def test_statsmodels_recovers_effects(self, large_dataset):
        fit = fit_glm(large_dataset)

        assert fit.method == "glm-statsmodels"
        assert not fit.is_mixed
        assert fit.sex_effect == pytest.approx(1.5, rel=0.15)
        assert fit.age_effect == pytest.approx(2.0, rel=0.15)
        assert fit.sex_se > 0
        assert fit.age_se > 0

    def test_sklearn_matches_statsmodels(self, large_dataset):
        sm_fit = fit_glm(large_dataset, backend="statsmodels")
        sk_fit = fit_glm(large_dataset, backend="sklearn")

        assert sk_fit.method == "glm-sklearn"
        assert sk_fit.sex_coefficient == pytest.approx(sm_fit.sex_coefficient, abs=5e-3)
        assert sk_fit.age_coefficient == pytest.approx(sm_fit.age_coefficient, abs=5e-4)
        assert math.isnan(sk_fit.sex_se)
        assert math.isnan(sk_fit.age_se)

    def test_poisson_recovers_rate_ratios(self, base_config):
        config = base_config.replace(
            family="poisson",
            sample_size=20000,
            odds_ratio_sex=1.3,
            odds_ratio_age=1.5,
            reference_prevalence=0.8,
        )
        fit = fit_glm(simulate_dataset(config))

        assert fit.family == "poisson"
        assert fit.sex_effect == pytest.approx(1.3, rel=0.1)
        assert fit.age_effect == pytest.approx(1.5, rel=0.1)

    def test_age_effect_uses_age_delta(self, large_dataset):
        fit = fit_glm(large_dataset)
        assert fit.age_delta == 15.0
        assert fit.age_effect == pytest.approx(math.exp(fit.age_coefficient * 15.0))

    @pytest.mark.parametrize("backend", ["statsmodels", "sklearn"])
    def test_constant_covariate_fails(self, small_config, backend):
        dataset = simulate_dataset(small_config.replace(male_probability=0.0))
        with pytest.raises(FitConvergenceError):
            fit_glm(dataset, backend=backend)

    def test_single_class_outcome_sklearn(self, small_config):
        dataset = simulate_dataset(small_config)
        dataset = dataclasses.replace(dataset, outcome=np.zeros(len(dataset), dtype=np.int64))
        with pytest.raises(FitConvergenceError, match="single class"):
            fit_glm(dataset, backend="sklearn")

    def test_perfect_separation_statsmodels(self, small_config):
        dataset = simulate_dataset(small_config)
        dataset = dataclasses.replace(dataset, outcome=dataset.male.astype(np.int64))
        with pytest.raises(FitConvergenceError):
            fit_glm(dataset, backend="statsmodels")

    def test_unknown_backend(self, small_config):
        with pytest.raises(InvalidParameterError, match="backend"):
            fit_glm(simulate_dataset(small_config), backend="glmnet")

    @pytest.mark.parametrize("transform", [lambda y: y * 2, lambda y: y + 0.5, lambda y: y - 1])
    def test_malformed_outcome(self, small_config, transform):
        dataset = simulate_dataset(small_config)
        dataset = dataclasses.replace(dataset, outcome=transform(dataset.outcome))
        with pytest.raises(InvalidParameterError, match="outcome"):
            fit_glm(dataset)
