"""
Diagnostic sinks for recoverable conversation anomalies.

Unknown item or response ids are expected races in a streaming protocol.
The conversation reports them through a sink instead of raising, so callers
can route, count or assert on them.
"""

import logging
from typing import Any, Optional, Protocol, runtime_checkable

from utils.ml_logging import get_logger


@runtime_checkable
class DiagnosticSink(Protocol):
    """Receives warnings about ignored events."""

    def warn(self, message: str, **context: Any) -> None:
        ...


class LoggerDiagnosticSink:
    """Forwards warnings to a logger, passing context as record extras."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or get_logger("realtime.conversation")

    def warn(self, message: str, **context: Any) -> None:
        self.logger.warning(message, extra=context)
