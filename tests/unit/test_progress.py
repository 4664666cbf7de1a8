"""
Tests for progress reporting.
"""

import io
from unittest.mock import MagicMock, patch

import pytest

from mcepi.progress import (
    PrintReporter,
    ProgressReporter,
    SimulationCancelled,
    TqdmReporter,
    compute_total_replicates,
)


def test_simulation_cancelled_message():
    assert str(SimulationCancelled("stop")) == "stop"


class TestProgressReporter:
    def test_start_reports_zero(self):
        callback = MagicMock()
        ProgressReporter(50, callback).start()
        callback.assert_called_once_with(0, 50)

    def test_throttling(self):
        callback = MagicMock()
        reporter = ProgressReporter(100, callback, update_every=10)
        reporter.start()
        callback.reset_mock()

        for _ in range(9):
            reporter.advance()
        callback.assert_not_called()

        reporter.advance()
        callback.assert_called_once_with(10, 100)

    def test_last_replicate_always_reported(self):
        callback = MagicMock()
        reporter = ProgressReporter(7, callback, update_every=5)
        reporter.start()
        for _ in range(7):
            reporter.advance()

        assert [c.args for c in callback.call_args_list] == [(0, 7), (5, 7), (7, 7)]

    def test_finish_completes_interrupted_count(self):
        callback = MagicMock()
        reporter = ProgressReporter(20, callback, update_every=100)
        reporter.start()
        reporter.advance(4)
        reporter.finish()

        callback.assert_called_with(20, 20)
        assert reporter.current == 20

    def test_finish_does_not_repeat_final_update(self):
        callback = MagicMock()
        reporter = ProgressReporter(3, callback, update_every=1)
        reporter.start()
        reporter.advance(3)
        n_calls = callback.call_count

        reporter.finish()
        assert callback.call_count == n_calls

    def test_failed_count(self):
        reporter = ProgressReporter(4, MagicMock())
        reporter.start()
        reporter.advance(failed=1)
        reporter.advance()
        reporter.advance(failed=1)
        assert reporter.failed == 2
        assert reporter.current == 3

    @pytest.mark.parametrize("total,expected", [(500, 5), (1000, 10), (30, 1)])
    def test_default_update_every(self, total, expected):
        assert ProgressReporter(total, MagicMock()).update_every == expected


class TestPrintReporter:
    def test_line_format(self):
        stream = io.StringIO()
        PrintReporter(stream=stream)(226, 500)
        line = stream.getvalue()

        assert line.startswith("\rReplicates 226/500")
        assert "45.2%" in line
        assert "elapsed" in line

    def test_newline_when_done(self):
        stream = io.StringIO()
        reporter = PrintReporter(stream=stream)
        reporter(0, 4)
        reporter(4, 4)
        assert stream.getvalue().endswith("\n")
        assert stream.getvalue().count("\n") == 1

    def test_empty_run_prints_nothing(self):
        stream = io.StringIO()
        PrintReporter(stream=stream)(0, 0)
        assert stream.getvalue() == ""

    def test_defaults_to_stderr(self, capsys):
        PrintReporter()(1, 2)
        captured = capsys.readouterr()
        assert "1/2" in captured.err
        assert captured.out == ""


class TestTqdmReporter:
    def test_missing_tqdm(self):
        with patch.dict("sys.modules", {"tqdm": None}):
            with pytest.raises(ImportError):
                TqdmReporter()(0, 10)

    def test_bar_lifecycle(self):
        bar = MagicMock()
        bar.n = 0
        tqdm_module = MagicMock()
        tqdm_module.tqdm.return_value = bar

        reporter = TqdmReporter(desc="fits")
        with patch.dict("sys.modules", {"tqdm": tqdm_module}):
            reporter(0, 10)
            tqdm_module.tqdm.assert_called_once_with(total=10, unit="rep", desc="fits")
            bar.update.assert_not_called()

            reporter(4, 10)
            bar.update.assert_called_once_with(4)

            bar.n = 4
            reporter(10, 10)
            bar.update.assert_called_with(6)
            bar.close.assert_called_once()


def test_compute_total_replicates():
    assert compute_total_replicates(250) == 250
    assert compute_total_replicates(250, n_configs=4) == 1000
