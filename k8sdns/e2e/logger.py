"""Logging for the end-to-end test support code."""

from __future__ import annotations

import abc
import logging
from typing import Callable, NoReturn

_log = logging.getLogger("k8sdns.e2e")


class FatalError(Exception):
    """Raised when the end-to-end environment hits an unrecoverable error."""


def log_with_prefix(log_func: Callable[[str], object], prefix: str, text: str) -> None:
    """Pass each line of text to log_func as "<prefix> | <line>"."""
    for line in text.split("\n"):
        log_func(f"{prefix} | {line}")


class Logger(abc.ABC):
    """Where the end-to-end support code sends its messages."""

    @abc.abstractmethod
    def fatal(self, message: str) -> NoReturn:
        """Report an unrecoverable error; never returns."""

    @abc.abstractmethod
    def log(self, message: str) -> None:
        """Report a progress message."""

    def log_with_prefix(self, prefix: str, text: str) -> None:
        """Log every line of text with a prefix."""
        log_with_prefix(self.log, prefix, text)


class StandardLogger(Logger):
    """Sends messages to the standard logging module; fatal raises FatalError."""

    def fatal(self, message: str) -> NoReturn:
        _log.critical("%s", message)
        raise FatalError(message)

    def log(self, message: str) -> None:
        _log.info("%s", message)

    def log_with_prefix(self, prefix: str, text: str) -> None:
        log_with_prefix(self.log, prefix, text)


_state: dict[str, Logger] = {"logger": StandardLogger()}


def get_logger() -> Logger:
    """Return the logger currently in use."""
    return _state["logger"]


def set_logger(logger: Logger) -> None:
    """Replace the logger used by the end-to-end support code."""
    if not isinstance(logger, Logger):
        raise TypeError(f"expected a Logger, got {type(logger).__name__}")
    _state["logger"] = logger