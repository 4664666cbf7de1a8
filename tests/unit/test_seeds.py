"""
Tests for random sources and per-replicate streams.
"""

import numpy as np
import pytest

from mcepi import RandomSourceError
from mcepi.core.seeds import check_seed, make_rng, replicate_rng, replicate_seed_sequence, resolve_base_seed


class TestCheckSeed:
    def test_none_passes_through(self):
        assert check_seed(None) is None

    def test_numpy_integer_accepted(self):
        assert check_seed(np.int64(5)) == 5

    @pytest.mark.parametrize("seed", [-1, 1.5, "7", True])
    def test_invalid_seed(self, seed):
        with pytest.raises(RandomSourceError):
            check_seed(seed)

    def test_random_source_error_is_value_error(self):
        with pytest.raises(ValueError):
            make_rng(-3)


class TestMakeRng:
    def test_seeded_generators_agree(self):
        a = make_rng(42).random(5)
        b = make_rng(42).random(5)
        np.testing.assert_array_equal(a, b)

    def test_global_state_untouched(self):
        np.random.seed(0)
        expected = np.random.random()
        np.random.seed(0)
        make_rng(42).random(100)
        assert np.random.random() == expected


class TestResolveBaseSeed:
    def test_explicit_seed_returned(self):
        assert resolve_base_seed(2137) == 2137

    def test_entropy_seed_is_usable(self):
        seed = resolve_base_seed(None)
        assert isinstance(seed, int)
        assert seed >= 0
        replicate_rng(seed, 0).random()


class TestReplicateStreams:
    """Replicate streams depend only on (base seed, index)."""

    def test_matches_spawned_children(self):
        children = np.random.SeedSequence(2137).spawn(4)
        for index, child in enumerate(children):
            expected = np.random.default_rng(child).random(3)
            np.testing.assert_array_equal(replicate_rng(2137, index).random(3), expected)

    def test_streams_differ_by_index(self):
        assert replicate_rng(2137, 0).random() != replicate_rng(2137, 1).random()

    def test_streams_differ_by_base_seed(self):
        assert replicate_rng(1, 0).random() != replicate_rng(2, 0).random()

    def test_spawn_key(self):
        assert replicate_seed_sequence(2137, 9).spawn_key == (9,)

    @pytest.mark.parametrize("index", [-1, 1.5])
    def test_invalid_index(self, index):
        with pytest.raises(RandomSourceError):
            replicate_rng(2137, index)

    def test_missing_base_seed(self):
        with pytest.raises(RandomSourceError):
            replicate_rng(None, 0)
