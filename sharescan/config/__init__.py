# sharescan/config/__init__.py
#
# Settings (SHARESCAN_* environment) and the package logger.

from sharescan.config.defaults import Default, default, logger  # noqa: F401

__all__ = [
    "Default",
    "default",
    "logger",
]
