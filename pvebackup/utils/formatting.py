"""Formatting helpers for progress and summary log lines."""

import logging


def format_duration(seconds: float, with_seconds: bool = True) -> str:
    """
    Format a duration as 'Xh Ym Zs' (or 'Xh Ym').

    Args:
        seconds: Duration in seconds
        with_seconds: Include the seconds component
    """
    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if with_seconds:
        return f"{hours}h {minutes}m {secs}s"
    return f"{hours}h {minutes}m"


def format_gib(size_bytes: int) -> str:
    """Format a byte count as GiB with two decimals."""
    return f"{size_bytes / 1073741824:.2f}"


def log_progress(logger: logging.Logger, current: int, total: int, label: str):
    """Log a 'label: P% (current/total)' progress line."""
    pct = current * 100 // total if total > 0 else 0
    logger.info(f"{label}: {pct}% ({current}/{total})")
