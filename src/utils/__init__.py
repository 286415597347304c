"""Utility functions."""

from src.utils.audit import log_action
from src.utils.dates import as_utc

__all__ = [
    "as_utc",
    "log_action",
]
