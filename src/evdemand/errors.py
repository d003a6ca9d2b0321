"""
Exception taxonomy for the EV demand simulation engine.

ConfigurationError is raised eagerly, before any scenario executes.
DataFormatError and InsufficientDataError belong to calibration and
validation calls. ScenarioExecutionError is isolated per replication;
FatalError aborts a whole run.
"""

from typing import Any, Dict, Optional


class EVDemandError(Exception):
    """Base class for all engine errors."""
    prefix = "ERROR:"

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})

    def __str__(self) -> str:
        return f"{self.prefix} {self.message}"

    def __reduce__(self):
        return self.__class__, (self.message, self.context)


class ConfigurationError(EVDemandError):
    """Raised when configuration values are out of range or inconsistent."""
    prefix = "CONFIG ERROR:"


class DataFormatError(EVDemandError):
    """Raised for malformed or missing fields in empirical data."""
    prefix = "DATA FORMAT ERROR:"


class InsufficientDataError(EVDemandError):
    """Raised when too few valid empirical readings are available."""
    prefix = "INSUFFICIENT DATA:"


class ScenarioExecutionError(EVDemandError):
    """Raised for a numerical failure inside one Monte Carlo replication."""
    prefix = "SCENARIO ERROR:"

    def __init__(
        self,
        message: str,
        replication_index: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, context)
        self.replication_index = replication_index
        if replication_index is not None:
            self.context.setdefault('replication_index', replication_index)

    def __reduce__(self):
        return self.__class__, (self.message, self.replication_index, self.context)


class FatalError(EVDemandError):
    """Raised when a run cannot produce a trustworthy result."""
    prefix = "FATAL:"
