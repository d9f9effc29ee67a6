"""Diagnostic line sink shared by transports, protocol, and controller."""

from __future__ import annotations

import logging
from collections.abc import Callable

LOGGER = logging.getLogger("nirctl")

LogFn = Callable[[str], None]


class LogSink:
    """Routes diagnostic lines to one registered function.

    Every line is also forwarded to the ``nirctl`` stdlib logger, so callers
    that configure ``logging`` see the same stream without registering a sink.
    Registering a new function replaces the previous one.
    """

    def __init__(self, fn: LogFn | None = None) -> None:
        self._fn = fn

    def set_logger(self, fn: LogFn | None) -> None:
        self._fn = fn

    def __call__(self, text: str, level: int = logging.INFO) -> None:
        LOGGER.log(level, text)
        if self._fn is not None:
            self._fn(text)

    def warning(self, text: str) -> None:
        self(text, logging.WARNING)

    def error(self, text: str) -> None:
        self(text, logging.ERROR)
