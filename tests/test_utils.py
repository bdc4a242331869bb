#!/usr/bin/env python
# coding: utf-8


"""
Tests for cellmix.utils and cellmix.io modules.

Covers:
- Logger configuration, progress bars and file output.
- Matrix coercion helpers and simulated data.
"""


import logging

import numpy as np
import pandas as pd
import pytest

from cellmix.core.errors import InvalidParameter, ShapeMismatch
from cellmix.core.mixture.simulation import simulate_mixture
from cellmix.io.data_utils import as_matrix, to_frame
from cellmix.utils import logger as logger_module
from cellmix.utils.logger import ProgressAwareLogger, get_logger


class TestLogger:
    """Test central logger"""

    def test_get_logger_returns_progressawarelogger(self):
        log = get_logger()
        assert isinstance(log, ProgressAwareLogger)
        assert get_logger() is log  # same instance

    def test_progress_methods(self, tmp_path):
        log = get_logger()
        log.handlers.clear()
        log.propagate = False
        logger_module._configure_logger(output_dir=str(tmp_path))

        log.progress("Testing", total=2)
        assert log._pbar is not None
        log.progress_update(1)
        log.info("Message")  # should auto-close
        assert log._pbar is None

    def test_progress_close(self):
        log = get_logger()
        log.progress("Closing", total=3)
        log.progress_close()
        assert log._pbar is None
        log.progress_update(1)  # no bar, no error

    def test_suppressed_debug_keeps_bar(self):
        log = get_logger()
        log.setLevel(logging.INFO)
        log.progress("Fitting", total=3)
        log.debug("row detail")
        assert log._pbar is not None
        log.warning("emitted")
        assert log._pbar is None

    def test_file_logging(self, tmp_path):
        log = logging.getLogger("cellmix")
        log.handlers.clear()
        log.propagate = False
        log = logger_module._configure_logger(output_dir=str(tmp_path))
        log.info("File output test")

        files = list((tmp_path / "log").glob("*.log"))
        assert files, "No log file created"
        content = files[0].read_text()
        assert "File output test" in content


class TestDataUtils:
    """Matrix coercion"""

    def test_array_input(self):
        values, rows, cols = as_matrix([[0.1, 0.2], [0.3, 0.4]])
        assert values.dtype == np.float64
        assert rows is None
        assert cols is None

    def test_dataframe_labels(self):
        df = pd.DataFrame([[0.1, 0.2]], index=[101], columns=["S1", "S2"])
        values, rows, cols = as_matrix(df)
        assert values.shape == (1, 2)
        assert rows == ["101"]
        assert cols == ["S1", "S2"]

    @pytest.mark.parametrize("obj", [None, [0.1, 0.2], np.empty((0, 3))])
    def test_rejects_bad_shapes(self, obj):
        with pytest.raises(ShapeMismatch):
            as_matrix(obj, "Y")

    def test_to_frame(self):
        df = to_frame(np.zeros((2, 2)), index=[1, 2], columns=["a", "b"])
        assert list(df.index) == ["1", "2"]
        assert list(df.columns) == ["a", "b"]
        assert isinstance(to_frame(np.zeros((2, 2))).index, pd.RangeIndex)


class TestSimulateMixture:
    """Synthetic mixtures"""

    def test_shapes_and_ranges(self):
        Y, mu, omega = simulate_mixture(30, 8, 3, seed=1)
        assert Y.shape == (30, 8)
        assert mu.shape == (30, 3)
        assert omega.shape == (8, 3)
        assert Y.min() >= 0.0
        assert Y.max() <= 1.0
        np.testing.assert_allclose(omega.sum(axis=1), 1.0)

    def test_seeded(self):
        a = simulate_mixture(10, 4, 2, seed=9)[0]
        b = simulate_mixture(10, 4, 2, seed=9)[0]
        np.testing.assert_array_equal(a, b)

    def test_frames(self):
        Y, mu, omega = simulate_mixture(5, 3, 2, seed=2, as_frame=True)
        assert list(Y.columns) == ["S1", "S2", "S3"]
        assert Y.index[0] == "cg00000001"
        assert list(omega.columns) == ["component_1", "component_2"]

    def test_negative_noise(self):
        with pytest.raises(InvalidParameter):
            simulate_mixture(5, 3, 2, noise=-0.1)
