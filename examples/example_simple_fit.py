#########################################################################################
##
##                 nlsid example: hello-world curve fit
##
##  Model:   y(t) = th[0] * (1 - exp(-th[1] t))   (saturating growth)
##  Fit:     amplitude and rate from noisy samples with Gauss-Newton
##
##  This is the simplest possible static curve fit. Start here before looking
##  at the dynamic calibration example.
##
#########################################################################################

# IMPORTS ===============================================================================

import numpy as np
import matplotlib.pyplot as plt

from nlsid import StaticModel, TimeSeriesData, nls


# MODEL DEFINITION ======================================================================

def saturation(t, th):
    return th[0] * (1.0 - np.exp(-th[1] * t))


def saturation_jacobian(t, th):
    e = np.exp(-th[1] * t)
    return np.column_stack([1.0 - e, th[0] * t * e])


model = StaticModel(
    h=saturation,
    th=[2.3, 0.3],                 # initial guess
    jacobian=saturation_jacobian,
    name="saturation",
)


# Run Example ===========================================================================

if __name__ == '__main__':

    # Synthetic noisy measurements: true parameters [2.0, 0.5]
    rng = np.random.default_rng(0)
    t_meas = np.linspace(0.0, 3.0, 31)
    y_meas = saturation(t_meas, [2.0, 0.5]) + 0.02 * rng.standard_normal(t_meas.size)

    meas = TimeSeriesData(time=t_meas, data=y_meas, name="y")

    # Fit, with the noise level estimated from the final residuals
    mhat, res = nls(model, meas, algorithm="gn", estimate_noise=True, verbose=True)

    res.display()
    res.uncertainty.display()

    fig, ax = meas.plot()
    ax.plot(t_meas, saturation(t_meas, mhat.th), label="fit")
    ax.legend()

    res.plot()
    plt.show()
