"""
Tests for covariate sampling and outcome simulation.
"""

import numpy as np
import pandas as pd
import pytest

from mcepi import InvalidParameterError, SimulatedIndividual, sample_covariates, simulate_dataset, simulate_outcomes
from mcepi.core.coefficients import derive_coefficients
from mcepi.stats.data_generation import true_cluster_intercepts
from tests.config import AGE_RANGE, CLUSTER_LABELS, CLUSTER_WEIGHTS, SEED


class TestSampleCovariates:
    """Sex, age and cluster draws."""

    def test_shapes_and_types(self, rng):
        cov = sample_covariates(rng, 500, 0.5, AGE_RANGE)

        assert len(cov) == 500
        assert set(np.unique(cov.male)) <= {0, 1}
        assert not cov.is_clustered
        assert cov.cluster_labels is None

    def test_ages_are_whole_years(self, rng):
        cov = sample_covariates(rng, 1000, 0.5, AGE_RANGE)
        np.testing.assert_array_equal(cov.age, np.round(cov.age))

    def test_age_distribution_centred_on_midpoint(self, rng):
        cov = sample_covariates(rng, 20000, 0.5, AGE_RANGE)
        assert np.mean(cov.age) == pytest.approx(64.0, abs=0.2)
        # 99% quantile rule: half-range 16 at z_0.99 = 2.326 gives sd ~6.88
        assert np.std(cov.age) == pytest.approx(16.0 / 2.3263, rel=0.03)

    def test_age_sd_quantile_changes_spread(self):
        wide = sample_covariates(np.random.default_rng(1), 20000, 0.5, AGE_RANGE, age_sd_quantile=0.9)
        narrow = sample_covariates(np.random.default_rng(1), 20000, 0.5, AGE_RANGE, age_sd_quantile=0.999)
        assert np.std(wide.age) > np.std(narrow.age)

    @pytest.mark.parametrize("p", [0.0, 1.0])
    def test_degenerate_male_probability(self, rng, p):
        cov = sample_covariates(rng, 200, p, AGE_RANGE)
        assert np.all(cov.male == int(p))

    def test_male_share(self, rng):
        cov = sample_covariates(rng, 20000, 0.3, AGE_RANGE)
        assert np.mean(cov.male) == pytest.approx(0.3, abs=0.015)

    def test_weighted_clusters(self, rng):
        cov = sample_covariates(rng, 22000, 0.5, AGE_RANGE, CLUSTER_LABELS, CLUSTER_WEIGHTS)

        assert cov.is_clustered
        assert cov.cluster_labels == CLUSTER_LABELS
        shares = np.bincount(cov.cluster, minlength=5) / 22000
        np.testing.assert_allclose(shares, np.array(CLUSTER_WEIGHTS) / 11.0, atol=0.015)

    def test_uniform_clusters_when_weights_omitted(self, rng):
        cov = sample_covariates(rng, 20000, 0.5, AGE_RANGE, ["x", "y"])
        assert np.mean(cov.cluster) == pytest.approx(0.5, abs=0.02)

    def test_zero_weight_cluster_never_drawn(self, rng):
        cov = sample_covariates(rng, 2000, 0.5, AGE_RANGE, ["a", "b", "c"], [1, 0, 1])
        assert not np.any(cov.cluster == 1)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"sample_size": 0},
            {"sample_size": -10},
            {"male_probability": 1.2},
            {"age_range": (80, 48)},
            {"cluster_labels": [], "cluster_weights": None},
            {"cluster_labels": ["a", "b"], "cluster_weights": [0, 0]},
            {"cluster_labels": ["a", "b"], "cluster_weights": [1, 2, 3]},
            {"cluster_labels": ["a", "b"], "cluster_weights": [1, -1]},
            {"cluster_labels": ["a"], "cluster_weights": None},
            {"cluster_labels": ["a", "b"], "cluster_weights": [3, 0]},
        ],
    )
    def test_degenerate_inputs_consume_no_randomness(self, kwargs):
        args = {"sample_size": 100, "male_probability": 0.5, "age_range": AGE_RANGE}
        args.update(kwargs)
        gen = np.random.default_rng(SEED)
        before = gen.bit_generator.state

        with pytest.raises(InvalidParameterError):
            sample_covariates(gen, **args)

        assert gen.bit_generator.state == before


class TestSimulateOutcomes:
    """Linear predictor and outcome draws."""

    def test_binary_outcomes(self, rng, base_config):
        coefs = derive_coefficients(base_config)
        cov = sample_covariates(rng, 1000, 0.5, AGE_RANGE)
        data = simulate_outcomes(rng, cov, coefs)

        assert set(np.unique(data.outcome)) <= {0, 1}
        assert data.cluster_intercepts is None
        np.testing.assert_allclose(data.linear_predictor, coefs.linear_predictor(cov.male, cov.age))
        np.testing.assert_allclose(data.mean, 1.0 / (1.0 + np.exp(-data.linear_predictor)))

    def test_poisson_outcomes(self, rng, base_config):
        coefs = derive_coefficients(base_config.replace(family="poisson", reference_prevalence=3.0))
        cov = sample_covariates(rng, 5000, 0.5, AGE_RANGE)
        data = simulate_outcomes(rng, cov, coefs)

        assert data.family == "poisson"
        assert np.all(data.outcome >= 0)
        assert data.outcome.max() > 1
        np.testing.assert_allclose(data.mean, np.exp(data.linear_predictor))
        assert np.mean(data.outcome) == pytest.approx(np.mean(data.mean), rel=0.05)

    def test_cluster_intercepts_shared_within_cluster(self, rng, base_config):
        coefs = derive_coefficients(base_config)
        cov = sample_covariates(rng, 1000, 0.5, AGE_RANGE, CLUSTER_LABELS, CLUSTER_WEIGHTS)
        data = simulate_outcomes(rng, cov, coefs, cluster_intercept_sd=2.0)

        assert data.cluster_intercepts.shape == (5,)
        offsets = data.linear_predictor - coefs.linear_predictor(cov.male, cov.age)
        for k in range(5):
            members = offsets[cov.cluster == k]
            np.testing.assert_allclose(members, data.cluster_intercepts[k])

    def test_zero_sd_gives_zero_intercepts(self, rng, base_config):
        coefs = derive_coefficients(base_config)
        cov = sample_covariates(rng, 200, 0.5, AGE_RANGE, CLUSTER_LABELS)
        data = simulate_outcomes(rng, cov, coefs, cluster_intercept_sd=0.0)
        np.testing.assert_array_equal(data.cluster_intercepts, np.zeros(5))

    def test_prevalence_tracks_mean(self, base_config):
        data = simulate_dataset(base_config.replace(sample_size=20000))
        assert data.observed_prevalence() == pytest.approx(np.mean(data.mean), abs=0.01)


class TestSimulateDataset:
    """Full simulation: reproducibility and draw order."""

    def test_same_seed_same_data(self, base_config):
        a = simulate_dataset(base_config)
        b = simulate_dataset(base_config)

        np.testing.assert_array_equal(a.male, b.male)
        np.testing.assert_array_equal(a.age, b.age)
        np.testing.assert_array_equal(a.outcome, b.outcome)

    def test_same_seed_same_clustered_data(self, clustered_config):
        a = simulate_dataset(clustered_config)
        b = simulate_dataset(clustered_config)

        np.testing.assert_array_equal(a.cluster, b.cluster)
        np.testing.assert_array_equal(a.cluster_intercepts, b.cluster_intercepts)
        np.testing.assert_array_equal(a.outcome, b.outcome)

    def test_different_seed_different_data(self, base_config):
        a = simulate_dataset(base_config)
        b = simulate_dataset(base_config.replace(random_seed=SEED + 1))
        assert not np.array_equal(a.outcome, b.outcome)

    def test_explicit_generator_matches_manual_draw_order(self, base_config):
        from scipy.stats import norm

        data = simulate_dataset(base_config, rng=np.random.default_rng(7))

        gen = np.random.default_rng(7)
        male = gen.binomial(1, 0.5, size=base_config.sample_size)
        age = np.round(gen.normal(64.0, 16.0 / norm.ppf(0.99), size=base_config.sample_size))

        np.testing.assert_array_equal(data.male, male)
        np.testing.assert_allclose(data.age, age)

    def test_unclustered_path_has_no_cluster_columns(self, base_config):
        data = simulate_dataset(base_config)
        assert not data.is_clustered
        assert data.cluster is None
        assert true_cluster_intercepts(data) == {}

    def test_invalid_config_consumes_no_randomness(self, base_config):
        gen = np.random.default_rng(SEED)
        before = gen.bit_generator.state

        with pytest.raises(InvalidParameterError):
            simulate_dataset(base_config.replace(reference_prevalence=1.0), rng=gen)
        with pytest.raises(InvalidParameterError):
            simulate_dataset(base_config.replace(sample_size=0), rng=gen)
        with pytest.raises(InvalidParameterError):
            simulate_dataset(base_config.replace(odds_ratio_sex=-1.0), rng=gen)

        assert gen.bit_generator.state == before


class TestSimulatedDataset:
    """Views on the simulated table."""

    def test_to_frame_columns(self, clustered_config):
        frame = simulate_dataset(clustered_config.replace(sample_size=200)).to_frame()

        assert list(frame.columns) == ["sex", "age", "cluster", "cluster_intercept", "linear_predictor", "mean", "outcome"]
        assert isinstance(frame["sex"].dtype, pd.CategoricalDtype)
        assert list(frame["cluster"].cat.categories) == list(CLUSTER_LABELS)
        assert len(frame) == 200

    def test_to_frame_unclustered(self, small_config):
        frame = simulate_dataset(small_config).to_frame()
        assert "cluster" not in frame.columns

    def test_individuals(self, clustered_config):
        data = simulate_dataset(clustered_config.replace(sample_size=50))
        people = list(data.individuals())

        assert len(people) == 50
        first = people[0]
        assert isinstance(first, SimulatedIndividual)
        assert first.sex in ("female", "male")
        assert first.cluster in CLUSTER_LABELS
        assert first.outcome in (0, 1)

    def test_cluster_summary(self, clustered_config):
        data = simulate_dataset(clustered_config.replace(sample_size=500))
        summary = data.cluster_summary()

        assert list(summary.index) == list(CLUSTER_LABELS)
        assert summary["n"].sum() == 500
        np.testing.assert_allclose(summary["cluster_intercept"].to_numpy(), data.cluster_intercepts)

    def test_cluster_summary_requires_clusters(self, small_config):
        with pytest.raises(ValueError):
            simulate_dataset(small_config).cluster_summary()

    def test_true_cluster_intercepts_mapping(self, clustered_config):
        data = simulate_dataset(clustered_config.replace(sample_size=100))
        mapping = true_cluster_intercepts(data)
        assert list(mapping) == list(CLUSTER_LABELS)
        assert mapping["A"] == pytest.approx(data.cluster_intercepts[0])
