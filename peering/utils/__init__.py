"""
Utility helpers shared across the peering package.
"""

from .logging_utils import (
    log_section_start,
    log_section_complete,
    log_progress,
    log_warning,
    log_error,
)
from .locks import TableLocks

__all__ = [
    "log_section_start",
    "log_section_complete",
    "log_progress",
    "log_warning",
    "log_error",
    "TableLocks",
]
