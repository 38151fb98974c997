"""User-facing hints.

Hints are diagnostics that do not fail a build but usually point at a
misconfiguration or a cheap speed-up. They are logged at WARNING level
with a ``Hint:`` prefix so they stand out in the console.
"""

import logging

logger = logging.getLogger(__name__)

HINT_PREFIX = "Hint: "


def hint(message: str, *args: object) -> None:
    """Log a hint with %-style arguments."""
    logger.warning(HINT_PREFIX + message, *args)


__all__ = ["HINT_PREFIX", "hint"]
