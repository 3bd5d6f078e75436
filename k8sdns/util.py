"""Small logging helpers."""

from __future__ import annotations

import logging

_log = logging.getLogger(__name__)


def log_with_prefix(prefix: str, text: str) -> None:
    """Log each line of text with a prefix so the output stays readable."""
    for line in text.split("\n"):
        _log.info("%s | %s", prefix, line)