"""
Tests for the exception hierarchy.
"""

import pytest

from mcepi.errors import (
    ExcessiveFitFailureError,
    FitConvergenceError,
    InvalidParameterError,
    MCEpiError,
    RandomSourceError,
)


class TestInvalidParameterError:
    def test_single_issue_message(self):
        exc = InvalidParameterError("sample_size", "a positive integer", 0)
        assert str(exc) == "sample_size must be a positive integer, got 0"
        assert exc.field == "sample_size"
        assert exc.issues == [("sample_size", "a positive integer", 0)]

    def test_multiple_issues_message(self):
        issues = [("a", "positive", -1), ("b", "in [0, 1]", 2)]
        exc = InvalidParameterError("a", "positive", -1, issues=issues)
        message = str(exc)
        assert message.startswith("Validation failed:")
        assert "a must be positive, got -1" in message
        assert "b must be in [0, 1], got 2" in message

    def test_is_value_error(self):
        assert issubclass(InvalidParameterError, ValueError)
        assert issubclass(InvalidParameterError, MCEpiError)


class TestFitConvergenceError:
    def test_reason_and_index(self):
        exc = FitConvergenceError("singular fit", replicate_index=4)
        assert exc.reason == "singular fit"
        assert str(exc) == "Replicate 4: singular fit"

    def test_without_index(self):
        assert str(FitConvergenceError("perfect separation")) == "perfect separation"

    def test_is_runtime_error(self):
        with pytest.raises(RuntimeError):
            raise FitConvergenceError("x")


class TestExcessiveFitFailureError:
    def test_message(self):
        exc = ExcessiveFitFailureError(12, 100, 0.1)
        assert "12/100" in str(exc)
        assert "12.0%" in str(exc)
        assert "10.0%" in str(exc)
        assert exc.failures == []


def test_random_source_error_hierarchy():
    assert issubclass(RandomSourceError, ValueError)
    assert issubclass(RandomSourceError, MCEpiError)
