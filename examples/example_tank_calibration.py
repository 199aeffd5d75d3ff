#########################################################################################
##
##                 nlsid example: calibration of a draining tank
##
##  Model:   A h' = q_in - a sqrt(2 g h)        (Torricelli outflow)
##  States:  [h]     liquid level [m]
##  Inputs:  [q_in]  inflow [m³/s], held constant between samples
##  Fit:     outflow area a and initial level h(0) from two experiments
##           with different inflow profiles
##
#########################################################################################

# IMPORTS ===============================================================================

import numpy as np
import matplotlib.pyplot as plt

from nlsid import DynamicModel, TimeSeriesData, nls


# SYSTEM PARAMETERS =====================================================================

A = 0.5      # Tank cross-section [m²]
g = 9.81     # Gravity            [m/s²]

a_true  = 0.01    # Outflow area    [m²]
h0_true = 1.2     # Initial level   [m]


# MODEL DEFINITION ======================================================================

def level_rate(t, x, u, th):
    h = max(x[0], 0.0)
    return np.array([(u[0] - th[0] * np.sqrt(2.0 * g * h)) / A])


def level(t, x, u, th):
    return x


model = DynamicModel(
    f=level_rate,
    h=level,
    x0=[1.0],        # initial guess of the level
    th=[0.02],       # initial guess of the outflow area
    hold="zoh",
    name="tank",
)


def experiment(inflow, seed, t_end=60.0, n=61):
    """Simulate the true tank and add measurement noise."""
    t = np.linspace(0.0, t_end, n)
    u = inflow(t)
    truth = model.with_values([a_true], [h0_true])
    y = truth.simulate(TimeSeriesData(time=t, data=np.zeros(n), input=u))[:, 0]
    rng = np.random.default_rng(seed)
    return TimeSeriesData(time=t, data=y + 0.005 * rng.standard_normal(n), input=u)


# Run Example ===========================================================================

if __name__ == '__main__':

    datasets = [
        experiment(lambda t: 0.02 * (t > 20.0), seed=1),
        experiment(lambda t: 0.01 + 0.01 * np.sin(0.2 * t), seed=2),
    ]

    mhat, res = nls(model, datasets, algorithm="rgn", estimate_noise=True, verbose=True)

    res.display()
    res.uncertainty.display()

    fig, axes = plt.subplots(1, 2, figsize=(10, 4))
    for ax, data in zip(axes, datasets):
        ax.plot(data.time, data.data, "o", alpha=0.5, label="measured")
        ax.plot(data.time, mhat.simulate(data)[:, 0], label="fitted")
        ax.set_xlabel("Time [s]")
        ax.set_ylabel("Level [m]")
        ax.legend()
        ax.grid(True)
    fig.tight_layout()

    res.uncertainty.plot()
    plt.show()
