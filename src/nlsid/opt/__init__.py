#########################################################################################
##
##                     NONLINEAR LEAST-SQUARES OPTIMIZER PUBLIC API
##                               (opt/__init__.py)
##
#########################################################################################

from .exceptions import (
    NLSError,
    ConfigurationError,
    NumericalFailure,
    SimulationError,
    RankDeficiencyWarning,
)
from .options import Algorithm, StallPolicy, NLSOptions
from .masks import FreeCoordinates
from .termination import TerminationReason, ConvergenceMonitor
from .iteration_log import IterationRecord, IterationLog
from .uncertainty import UncertaintyEstimate, estimate_uncertainty
from .levenberg_marquardt import LevenbergMarquardt
from .nls import NLSResult, nls, solve
