"""
Error reporting collaborator.

report(level, message) is fire-and-forget: implementations must never raise
into the caller.
"""
import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class ErrorReporter(ABC):
    """Abstract sink for operational conditions (degraded storage, rejected submissions)."""

    @abstractmethod
    def report(self, level: str, message: str) -> None:
        pass


class LoggingErrorReporter(ErrorReporter):
    """Reports through the standard logging tree."""

    LEVELS = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
        "critical": logging.CRITICAL,
    }

    def __init__(self, logger_name: str = "matter_opening.errors"):
        self._logger = logging.getLogger(logger_name)

    def report(self, level: str, message: str) -> None:
        try:
            self._logger.log(self.LEVELS.get((level or "").lower(), logging.ERROR), message)
        except Exception:
            # Fire-and-forget; a broken handler must not break the workflow
            logger.debug("Error reporter failed to emit: %s", message)
