#########################################################################################
##
##                          ERRORS AND WARNINGS OF THE OPTIMIZER
##                                (opt/exceptions.py)
##
#########################################################################################


class NLSError(Exception):
    """Base class for all errors raised by the optimizer."""


class ConfigurationError(NLSError, ValueError):
    """Invalid model, data or option; raised before the first iteration."""


class NumericalFailure(NLSError, FloatingPointError):
    """Fatal numerical breakdown during the iterations.

    Parameters
    ----------
    reason : str
        Human-readable cause, e.g. infinite or NaN cost.
    log : IterationLog, optional
        Iterations completed before the failure.
    """

    def __init__(self, reason: str, log=None):
        super().__init__(reason)
        self.reason = reason
        self.log = log


class SimulationError(NLSError, RuntimeError):
    """The built-in simulator could not integrate the model."""


class RankDeficiencyWarning(UserWarning):
    """No singular value of the Jacobian exceeded the retention tolerance."""
