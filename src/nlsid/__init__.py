from importlib import metadata

try:
    __version__ = metadata.version("nlsid")
except Exception:
    __version__ = "unknown"

from .opt import (
    nls,
    solve,
    NLSOptions,
    NLSResult,
    Algorithm,
    StallPolicy,
    TerminationReason,
    NLSError,
    ConfigurationError,
    NumericalFailure,
    SimulationError,
    RankDeficiencyWarning,
)
from .models import StaticModel, DynamicModel, as_model
from .utils.logger import LoggerManager
from .utils.timeseries_data import TimeSeriesData
