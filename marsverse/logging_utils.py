"""Logging utilities for Marsverse simulations.

Provides color-coded console output so the pulse loop's deterministic work,
warnings and errors are easy to tell apart when watching a run.
"""

import os
from enum import Enum


class Color(Enum):
    """ANSI color codes for terminal output."""

    BLUE = "\033[94m"      # Deterministic pulse work (scoring, selection)
    YELLOW = "\033[93m"    # Warnings and safety fallbacks
    RED = "\033[91m"       # Errors
    GREEN = "\033[92m"     # Success/completion
    CYAN = "\033[96m"      # Info/metadata

    BOLD = "\033[1m"
    RESET = "\033[0m"


# Markers for operation types (color-blind accessible)
LOG_TAG_DETERMINISTIC = "[•]"
LOG_TAG_WARNING = "[?]"
LOG_TAG_ERROR = "[!]"
LOG_TAG_SUCCESS = "[✓]"
LOG_TAG_INFO = "[i]"


def colored(text: str, color: Color, bold: bool = False) -> str:
    """Wrap text in ANSI color codes if colors are enabled.

    Args:
        text: Text to colorize
        color: Color to apply
        bold: Whether to make text bold

    Returns:
        Colorized text if MARSVERSE_NO_COLOR is not set, otherwise plain text
    """
    if os.getenv("MARSVERSE_NO_COLOR"):
        return text

    prefix = color.value
    if bold:
        prefix = Color.BOLD.value + prefix

    return f"{prefix}{text}{Color.RESET.value}"


def is_verbose(flag: str | None = None) -> bool:
    """Return True when verbose output is switched on.

    ``MARSVERSE_VERBOSE`` enables everything; a specific ``flag`` such as
    ``DEBUG_SCORING`` enables one subsystem.
    """
    if os.getenv("MARSVERSE_VERBOSE"):
        return True
    return bool(flag and os.getenv(flag))


def log_deterministic(message: str) -> None:
    """Log a deterministic pulse operation (blue)."""
    print(colored(f"{LOG_TAG_DETERMINISTIC} {message}", Color.BLUE))


def log_warning(message: str) -> None:
    """Log a recoverable oddity (yellow)."""
    print(colored(f"{LOG_TAG_WARNING} {message}", Color.YELLOW))


def log_error(message: str) -> None:
    """Log an error (red)."""
    print(colored(f"{LOG_TAG_ERROR} {message}", Color.RED))


def log_success(message: str) -> None:
    """Log a success (green)."""
    print(colored(f"{LOG_TAG_SUCCESS} {message}", Color.GREEN))


def log_info(message: str) -> None:
    """Log metadata/info (cyan)."""
    print(colored(f"{LOG_TAG_INFO} {message}", Color.CYAN))


def log_debug(flag: str, message: str) -> None:
    """Log a diagnostic line only when ``flag`` (or MARSVERSE_VERBOSE) is set."""
    if is_verbose(flag):
        print(colored(f"  [{flag}] {message}", Color.CYAN))
