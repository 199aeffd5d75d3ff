from .logger import LoggerManager
from .timeseries_data import TimeSeriesData
