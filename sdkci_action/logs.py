"""Logging setup for the action entry points."""

import logging
import sys

from .platform import Platform

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class AnnotationHandler(logging.Handler):
    """Turns error records into CI error annotations."""

    def __init__(self, platform: Platform, level: int = logging.ERROR):
        super().__init__(level)
        self.platform = platform

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.platform.emit_error_annotation(record.getMessage())
        except Exception:
            self.handleError(record)


def configure_logging(level: int, platform: Platform | None = None) -> None:
    """
    Configure root logging for an action run.

    All output goes to stdout, since CI runners interleave stdout and stderr
    unpredictably. When a platform is given, errors are also emitted as
    platform annotations.
    """
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        stream=sys.stdout,
        force=True,
    )
    if platform is not None:
        logging.getLogger().addHandler(AnnotationHandler(platform))
    # requests/urllib3 are chatty at debug level.
    logging.getLogger("urllib3").setLevel(max(level, logging.INFO))
