"""
Tests for solver observers and logging setup.
"""

import logging

import pytest
import numpy as np
from numpy.testing import assert_allclose

from dmri_fem.assembly import assemble_matrices
from dmri_fem.btpde import IntervalConstantBTPDE, StepperConfig
from dmri_fem.callbacks import Callback, Printer, SignalHistory
from dmri_fem.gradients import PGSE, ScalarGradient
from dmri_fem.logging_config import setup_logging


@pytest.fixture
def problem(box_model):
    matrices = assemble_matrices(box_model)
    return IntervalConstantBTPDE(box_model, matrices, StepperConfig(timestep=0.25))


@pytest.fixture
def gradient():
    return ScalarGradient([1.0, 0.0, 0.0], PGSE(1.0, 2.0), 2.0)


class TestCallbackBase:
    """The base observer does nothing."""

    def test_hooks_are_no_ops(self, problem, gradient):
        result = problem.solve(gradient, [Callback()])
        assert result.nsteps == 12


class TestSignalHistory:
    """Tests for signal recording."""

    def test_records_every_step(self, problem, gradient):
        history = SignalHistory()
        problem.solve(gradient, [history])
        times, signals = history.as_arrays()

        assert len(times) == 13
        assert times[0] == 0.0
        assert_allclose(times[-1], 3.0)
        assert signals.dtype == np.complex128
        assert_allclose(signals[0], 1.0)

    def test_subsampling(self, problem, gradient):
        history = SignalHistory(nupdate=4)
        problem.solve(gradient, [history])
        times, _ = history.as_arrays()
        assert_allclose(times, [0.0, 1.0, 2.0, 3.0])

    def test_reset_between_solves(self, problem, gradient):
        history = SignalHistory()
        problem.solve(gradient, [history])
        problem.solve(gradient, [history])
        assert len(history.times) == 13

    def test_attenuation_recorded(self, problem, gradient):
        history = SignalHistory()
        problem.solve(gradient, [history])
        _, signals = history.as_arrays()
        # Dephasing during the first pulse
        assert abs(signals[4]) < abs(signals[0])


class TestUpdateInterval:
    """Observers reject update intervals they cannot honour."""

    @pytest.mark.parametrize("cls", [Printer, SignalHistory])
    @pytest.mark.parametrize("nupdate", [0, -3, 2.5])
    def test_invalid_nupdate(self, cls, nupdate):
        with pytest.raises(ValueError, match="nupdate"):
            cls(nupdate=nupdate)

    @pytest.mark.parametrize("cls", [Printer, SignalHistory])
    def test_valid_nupdate(self, cls):
        assert cls(nupdate=3).nupdate == 3


class TestPrinter:
    """Tests for progress logging."""

    def test_logs_progress(self, problem, gradient, caplog):
        caplog.set_level(logging.INFO, logger="dmri_fem")
        problem.solve(gradient, [Printer(nupdate=6)])

        messages = [r.getMessage() for r in caplog.records]
        assert "Solving BTPDE with IntervalConstantBTPDE" in messages
        assert sum(m.startswith("t = ") for m in messages) == 2
        assert "Solve complete after 12 time steps" in messages

    def test_verbose_logs_signal(self, problem, gradient, caplog):
        caplog.set_level(logging.INFO, logger="dmri_fem")
        problem.solve(gradient, [Printer(nupdate=12, verbosity=2)])

        messages = [r.getMessage() for r in caplog.records]
        assert any("Degrees of freedom: 27" in m for m in messages)
        assert any("signal = " in m for m in messages)


class TestSetupLogging:
    """Tests for package logger configuration."""

    def test_configures_package_logger(self, tmp_path):
        log_file = tmp_path / "run.log"
        setup_logging(logging.DEBUG, log_file=str(log_file))

        logger = logging.getLogger("dmri_fem")
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 2

        logging.getLogger("dmri_fem.assembly").debug("hello from assembly")
        for handler in logger.handlers:
            handler.flush()
        assert "hello from assembly" in log_file.read_text()

        # Reconfiguring replaces handlers instead of adding more
        file_handler = next(
            h for h in logger.handlers if isinstance(h, logging.FileHandler)
        )
        setup_logging(logging.WARNING)
        assert len(logger.handlers) == 1
        assert file_handler not in logger.handlers
        assert file_handler.stream is None

        logger.handlers.clear()
        logger.setLevel(logging.NOTSET)
