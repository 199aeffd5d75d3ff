########################################################################################
##
##                                  TESTS FOR
##                             'models.py' and 'simulation.py'
##
########################################################################################

# IMPORTS ==============================================================================

import numpy as np
import pytest

from nlsid.models import DynamicModel, StaticModel, as_model
from nlsid.opt.exceptions import ConfigurationError, SimulationError
from nlsid.simulation import _interp_at, _zoh_at, simulate
from nlsid.utils.timeseries_data import TimeSeriesData


# ═══════════════════════════════════════════════════════════════════════════
# Static model
# ═══════════════════════════════════════════════════════════════════════════

class TestStaticModel:

    def test_vectors_normalized(self):
        m = StaticModel(h=lambda th: th, th=[[1.0], [2.0]], noise_cov=2.0, noise_mean=0.5)
        np.testing.assert_array_equal(m.th, [1.0, 2.0])
        assert m.noise_cov.shape == (1, 1)
        assert m.noise_mean.shape == (1,)
        assert m.nth == 2
        assert m.nx == 0
        assert m.x0.size == 0
        assert not m.is_simulatable

    def test_unknown_parameter_count(self):
        assert StaticModel(h=lambda th: th).nth == 0

    def test_evaluate_with_and_without_time(self):
        m = StaticModel(h=lambda *args: args[-1] * (1.0 if len(args) == 1 else args[0]))
        np.testing.assert_array_equal(m.evaluate(np.array([3.0])), [3.0])
        np.testing.assert_array_equal(m.evaluate(np.array([3.0]), np.array([1.0, 2.0])), [3.0, 6.0])

    def test_with_values_copies(self):
        m = StaticModel(h=lambda th: th, th=[1.0])
        new = m.with_values(np.array([5.0]))
        assert new is not m
        assert new.th[0] == 5.0
        assert m.th[0] == 1.0

    def test_h_must_be_callable(self):
        with pytest.raises(ConfigurationError):
            StaticModel(h=3.0)


# ═══════════════════════════════════════════════════════════════════════════
# Dynamic model
# ═══════════════════════════════════════════════════════════════════════════

class TestDynamicModel:

    def _model(self, **kwargs):
        return DynamicModel(
            f=lambda t, x, u, th: -th[0] * x,
            h=lambda t, x, u, th: x,
            x0=[2.0],
            th=[1.0],
            **kwargs,
        )

    def test_dimensions(self):
        m = self._model()
        assert m.nth == 1
        assert m.nx == 1
        assert m.is_simulatable
        assert not m.is_discrete
        assert self._model(fs=10.0).is_discrete

    def test_invalid_settings(self):
        with pytest.raises(ConfigurationError, match="hold"):
            self._model(hold="foh")
        with pytest.raises(ConfigurationError, match="fs"):
            self._model(fs=-1.0)
        with pytest.raises(ConfigurationError, match="simulator"):
            self._model(simulator="euler")

    def test_custom_simulator_output_reshaped(self):
        calls = []

        def simulator(model, data):
            calls.append(model)
            return model.x0[0] * np.ones(data.length)

        m = self._model(simulator=simulator)
        data = TimeSeriesData(time=[0.0, 1.0, 2.0], data=[0.0, 0.0, 0.0])
        y = m.simulate(data)

        assert y.shape == (3, 1)
        np.testing.assert_array_equal(y[:, 0], 2.0)
        assert len(calls) == 1 and calls[0] is m

    def test_simulator_may_return_timeseries(self):
        def simulator(model, data):
            return TimeSeriesData(time=data.time, data=np.zeros(data.length))

        data = TimeSeriesData(time=[0.0, 1.0], data=[0.0, 0.0])
        assert self._model(simulator=simulator).simulate(data).shape == (2, 1)

    def test_with_values_keeps_x0(self):
        m = self._model()
        new = m.with_values(np.array([3.0]))
        np.testing.assert_array_equal(new.x0, [2.0])
        np.testing.assert_array_equal(new.th, [3.0])


# ═══════════════════════════════════════════════════════════════════════════
# Coercion
# ═══════════════════════════════════════════════════════════════════════════

class TestAsModel:

    def test_model_passthrough(self):
        m = StaticModel(h=lambda th: th, th=[1.0])
        assert as_model(m) is m

    def test_callable(self):
        m = as_model(lambda th: th)
        assert isinstance(m, StaticModel)
        assert m.th is None

    def test_static_mapping(self):
        jac = lambda th: np.eye(1)
        m = as_model({"h": lambda th: th, "th": [1.0], "J": jac})
        assert isinstance(m, StaticModel)
        assert m.jacobian is jac

    def test_dynamic_mapping(self):
        m = as_model({
            "f": lambda t, x, u, th: x,
            "h": lambda t, x, u, th: x,
            "x0": [1.0],
            "th": [0.0],
        })
        assert isinstance(m, DynamicModel)

    def test_unrecognized(self):
        with pytest.raises(ConfigurationError, match="not recognized"):
            as_model({"th": [1.0]})
        with pytest.raises(ConfigurationError, match="not recognized"):
            as_model("model")

    def test_dynamic_mapping_with_unknown_key(self):
        with pytest.raises(ConfigurationError, match="not recognized"):
            as_model({
                "f": lambda t, x, u, th: x,
                "h": lambda t, x, u, th: x,
                "x0": [1.0],
                "bogus": 1,
            })


# ═══════════════════════════════════════════════════════════════════════════
# Simulation
# ═══════════════════════════════════════════════════════════════════════════

class TestInputHold:

    def setup_method(self):
        self.t = np.array([0.0, 1.0, 2.0])
        self.u = np.array([[0.0], [10.0], [20.0]])

    def test_interpolation(self):
        np.testing.assert_allclose(_interp_at(0.5, self.t, self.u), [5.0])
        np.testing.assert_allclose(_interp_at(-1.0, self.t, self.u), [0.0])
        np.testing.assert_allclose(_interp_at(3.0, self.t, self.u), [20.0])

    def test_zero_order_hold(self):
        np.testing.assert_allclose(_zoh_at(0.99, self.t, self.u), [0.0])
        np.testing.assert_allclose(_zoh_at(1.0, self.t, self.u), [10.0])
        np.testing.assert_allclose(_zoh_at(5.0, self.t, self.u), [20.0])


class TestSimulate:

    def test_continuous_decay(self):
        m = DynamicModel(
            f=lambda t, x, u, th: -th[0] * x,
            h=lambda t, x, u, th: x,
            x0=[2.0],
            th=[0.5],
        )
        t = np.linspace(0.0, 4.0, 9)
        y = simulate(m, TimeSeriesData(time=t, data=np.zeros_like(t)))

        assert y.shape == (9, 1)
        np.testing.assert_allclose(y[:, 0], 2.0 * np.exp(-0.5 * t), rtol=1e-6)

    def test_step_input_with_zero_order_hold(self):
        # x' = u, u = 1 from t = 1 on
        m = DynamicModel(
            f=lambda t, x, u, th: u,
            h=lambda t, x, u, th: x,
            x0=[0.0],
            th=[],
        )
        t = np.array([0.0, 1.0, 2.0, 3.0])
        data = TimeSeriesData(time=t, data=np.zeros(4), input=[0.0, 1.0, 1.0, 1.0])

        y = simulate(m, data)
        np.testing.assert_allclose(y[:, 0], [0.0, 0.0, 1.0, 2.0], atol=1e-8)

    def test_discrete_recursion(self):
        m = DynamicModel(
            f=lambda t, x, u, th: th[0] * x,
            h=lambda t, x, u, th: 2.0 * x,
            x0=[1.0],
            th=[0.5],
            fs=1.0,
        )
        data = TimeSeriesData(time=np.arange(4.0), data=np.zeros(4))
        np.testing.assert_allclose(simulate(m, data)[:, 0], [2.0, 1.0, 0.5, 0.25])

    def test_static_output_without_states(self):
        m = DynamicModel(
            f=lambda t, x, u, th: x,
            h=lambda t, x, u, th: th[0] * t,
            x0=[],
            th=[3.0],
        )
        data = TimeSeriesData(time=[0.0, 1.0, 2.0], data=np.zeros(3))
        np.testing.assert_allclose(simulate(m, data)[:, 0], [0.0, 3.0, 6.0])

    def test_failed_integration_raises(self):
        m = DynamicModel(
            f=lambda t, x, u, th: x ** 2,
            h=lambda t, x, u, th: x,
            x0=[1.0],
            th=[],
        )
        data = TimeSeriesData(time=[0.0, 2.0], data=np.zeros(2))
        with pytest.raises(SimulationError):
            simulate(m, data)
