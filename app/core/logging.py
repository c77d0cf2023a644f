import logging
import sys
from typing import Optional, TextIO

from app.core.config import settings

# Loggers that report every dropped record and ignored event at DEBUG
TRACE_DEBUG_LOGGERS = ("streaming.parser", "streaming.transport", "observability.reducer")


def configure_logging(level: Optional[str] = None, stream: TextIO = sys.stdout) -> None:
    """
    Configure console logging for the trace service.

    Args:
        level: Root level; defaults to settings.log_level
        stream: Destination for log lines
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level or settings.log_level)

    # Replace handlers installed by earlier calls or by uvicorn
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] [%(name)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    ))
    root_logger.addHandler(handler)

    trace_level = logging.DEBUG if settings.trace_debug else logging.INFO
    for name in TRACE_DEBUG_LOGGERS:
        logging.getLogger(name).setLevel(trace_level)

    # Silence noise
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
