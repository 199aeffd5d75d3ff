#########################################################################################
##
##                                 LOGGING MANAGER
##                                (utils/logger.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import logging


# CLASS =================================================================================

class LoggerManager:
    """Process-wide owner of the ``nlsid`` logger hierarchy.

    The first instantiation attaches a single stream handler to the package
    root logger. Subsequent instantiations return the same manager, so modules
    can call ``LoggerManager().get_logger(__name__)`` at import time.

    Example
    -------
    .. code-block:: python

        LoggerManager().set_level(logging.DEBUG)   # show the iteration table
    """

    ROOT = "nlsid"
    FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

    _instance: "LoggerManager | None" = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._configure()
        return cls._instance


    def _configure(self) -> None:
        self.root = logging.getLogger(self.ROOT)
        if not self.root.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(self.FORMAT))
            self.root.addHandler(handler)
        if self.root.level == logging.NOTSET:
            self.root.setLevel(logging.WARNING)


    def get_logger(self, name: str) -> logging.Logger:
        """Return a logger below the package root (``name`` is usually ``__name__``)."""
        if name != self.ROOT and not name.startswith(self.ROOT + "."):
            name = f"{self.ROOT}.{name}"
        return logging.getLogger(name)


    def set_level(self, level: int | str) -> None:
        """Set the level of the package root logger."""
        self.root.setLevel(level)


    @property
    def level(self) -> int:
        return self.root.level
