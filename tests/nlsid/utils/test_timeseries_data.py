########################################################################################
##
##                                  TESTS FOR
##                     'utils/timeseries_data.py' and 'utils/logger.py'
##
########################################################################################

# IMPORTS ==============================================================================

import logging
import unittest

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

import numpy as np

from nlsid.utils.logger import LoggerManager
from nlsid.utils.timeseries_data import TimeSeriesData


# TESTS ================================================================================

class TestTimeSeriesData(unittest.TestCase):
    """Construction, normalization and accessors of TimeSeriesData."""

    def test_init_1d(self):
        t = np.linspace(0.0, 1.0, 5)
        ts = TimeSeriesData(time=t, data=2.0 * t)
        self.assertEqual(ts.length, 5)
        self.assertEqual(ts.ny, 1)
        self.assertEqual(ts.nu, 0)
        self.assertIsNone(ts.inputs)
        self.assertEqual(ts.outputs.shape, (5, 1))
        self.assertAlmostEqual(ts.duration, 1.0)

    def test_transposed_outputs_are_aligned(self):
        t = np.arange(4.0)
        ts = TimeSeriesData(time=t, data=np.zeros((2, 4)), input=np.ones((3, 4)))
        self.assertEqual(ts.data.shape, (4, 2))
        self.assertEqual(ts.ny, 2)
        self.assertEqual(ts.nu, 3)
        self.assertEqual(ts.inputs.shape, (4, 3))

    def test_single_sample(self):
        ts = TimeSeriesData(time=[0.0], data=[1.0])
        self.assertEqual(ts.length, 1)

    def test_invalid_time(self):
        with self.assertRaises(ValueError):
            TimeSeriesData(time=[], data=[])
        with self.assertRaises(ValueError):
            TimeSeriesData(time=[0.0, 0.0], data=[1.0, 2.0])

    def test_length_mismatch(self):
        with self.assertRaises(ValueError):
            TimeSeriesData(time=[0.0, 1.0], data=[1.0, 2.0, 3.0])
        with self.assertRaises(ValueError):
            TimeSeriesData(time=[0.0, 1.0], data=np.zeros((3, 3)))

    def test_from_mapping(self):
        ts = TimeSeriesData.from_mapping({"t": [0.0, 1.0], "y": [1.0, 2.0], "u": [0.0, 1.0]})
        self.assertEqual(ts.nu, 1)
        with self.assertRaises(ValueError):
            TimeSeriesData.from_mapping({"t": [0.0, 1.0]})
        with self.assertRaises(ValueError):
            TimeSeriesData.from_mapping({"y": [1.0, 2.0]})

    def test_repr(self):
        ts = TimeSeriesData(time=[0.0, 1.0], data=[1.0, 2.0], name="level")
        self.assertIn("level", repr(ts))

    def test_plot(self):
        t = np.arange(3.0)
        fig, ax = TimeSeriesData(time=t, data=np.zeros((3, 2))).plot()
        self.assertEqual(len(ax.lines), 2)
        plt.close(fig)


class TestLoggerManager(unittest.TestCase):
    """Package logger hierarchy."""

    def test_singleton(self):
        self.assertIs(LoggerManager(), LoggerManager())

    def test_get_logger_prefixes_root(self):
        mgr = LoggerManager()
        self.assertEqual(mgr.get_logger("custom").name, "nlsid.custom")
        self.assertEqual(mgr.get_logger("nlsid.opt.nls").name, "nlsid.opt.nls")

    def test_single_handler(self):
        LoggerManager()
        LoggerManager()
        self.assertEqual(len(logging.getLogger("nlsid").handlers), 1)

    def test_set_level(self):
        mgr = LoggerManager()
        old = mgr.level
        try:
            mgr.set_level(logging.DEBUG)
            self.assertEqual(mgr.level, logging.DEBUG)
        finally:
            mgr.set_level(old)
