"""
Provides UTC timestamped logging helpers shared by every orchestrator stage.
"""

from datetime import datetime, UTC
from typing import Optional


def _utc_timestamp() -> str:
    """
    Generate the current UTC timestamp string.

    Returns:
        str: Timestamp formatted as YYYY-MM-DD HH:MM:SS in UTC.
    """
    return datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")


def log_section_start(section: str, details: Optional[str] = None) -> None:
    """
    Log the start of a section.

    Args:
        section (str): Description of the section that is beginning.
        details (Optional[str]): Optional extra context to append to the message.
    """
    suffix = f" - {details}" if details else ""
    print(f"[{_utc_timestamp()}] Starting: {section}{suffix}", flush=True)


def log_section_complete(section: str, details: Optional[str] = None) -> None:
    """
    Log the completion of a section.

    Args:
        section (str): Description of the section that finished.
        details (Optional[str]): Optional extra context to append to the message.
    """
    suffix = f" - {details}" if details else ""
    print(f"[{_utc_timestamp()}] Completed: {section}{suffix}", flush=True)


def log_progress(section: str, message: str) -> None:
    """
    Log an in-progress update for a section.

    Args:
        section (str): Description of the section that is running.
        message (str): Progress message to display for the section.
    """
    print(f"[{_utc_timestamp()}] {section}: {message}", flush=True)


def log_warning(section: str, message: Exception | str) -> None:
    """
    Log a degraded-but-continuing condition for a section.

    Args:
        section (str): Description of the section where the condition occurred.
        message (Exception | str): Exception instance or message to record.
    """
    print(f"[{_utc_timestamp()}] Warning in {section}: {message}", flush=True)


def log_error(section: str, error: Exception | str) -> None:
    """
    Log an error that occurred during a section.

    Args:
        section (str): Description of the section where the error occurred.
        error (Exception | str): Exception instance or error message to record.
    """
    print(f"[{_utc_timestamp()}] Error in {section}: {error}", flush=True)
