#########################################################################################
##
##                 nlsid example: pure optimization of the Rosenbrock function
##
##  Problem: min_th  100 (th[1] - th[0]^2)^2 + (1 - th[0])^2
##           written as the residual h(th) = [10 (th[1] - th[0]^2), 1 - th[0]]
##  Fit:     compares the four search strategies from the classic start (-1.2, 1)
##
#########################################################################################

# IMPORTS ===============================================================================

import numpy as np
import matplotlib.pyplot as plt

from nlsid import StaticModel, nls


# PROBLEM DEFINITION ====================================================================

def rosenbrock(th):
    return np.array([10.0 * (th[1] - th[0] ** 2), 1.0 - th[0]])


def rosenbrock_jacobian(th):
    return np.array([[-20.0 * th[0], 10.0], [-1.0, 0.0]])


model = StaticModel(h=rosenbrock, th=[-1.2, 1.0], jacobian=rosenbrock_jacobian)


# Run Example ===========================================================================

if __name__ == '__main__':

    fig, ax = plt.subplots(figsize=(8, 4))

    for algorithm in ["gn", "rgn", "lm", "sd"]:
        mhat, res = nls(model, algorithm=algorithm, maxiter=200, gtol=1e-10)

        print(f"{algorithm:>4}: th = {mhat.th}, {res.iterations} iterations, {res.term}")
        ax.semilogy(np.r_[res.log.cost0, res.costs], marker=".", label=algorithm)

    ax.set_xlabel("Iteration")
    ax.set_ylabel("Cost")
    ax.set_title("Rosenbrock: cost per iteration")
    ax.grid(True, alpha=0.3)
    ax.legend()
    plt.show()
