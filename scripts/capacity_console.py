#!/usr/bin/env python3
"""
Console and log-file output shared by the capacity report scripts
"""

import sys
from datetime import datetime
from typing import Optional, TextIO

_log_file: Optional[str] = None


# Color output
# pylint: disable=too-few-public-methods
class Colors:
    """ANSI color codes for terminal output"""

    RED = "\033[0;31m"
    GREEN = "\033[0;32m"
    YELLOW = "\033[1;33m"
    BLUE = "\033[0;34m"
    NC = "\033[0m"  # No Color


def open_log(path: Optional[str]) -> bool:
    """Start a fresh log file; returns False if it could not be created"""
    global _log_file
    _log_file = None
    if not path:
        return False

    try:
        with open(path, "w", encoding="utf-8") as f:
            f.write(f"Capacity Report Log - {datetime.now()}\n")
    except OSError as e:
        print(
            f"{Colors.YELLOW}Warning: Could not create log file: {e}{Colors.NC}",
            file=sys.stderr,
        )
        return False

    _log_file = path
    log("Log started")
    return True


def close_log() -> None:
    global _log_file
    _log_file = None


def log(message: str) -> None:
    """Write message to log file if logging is enabled"""
    global _log_file
    if not _log_file:
        return

    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    try:
        with open(_log_file, "a", encoding="utf-8") as f:
            f.write(f"[{timestamp}] {message}\n")
    except OSError as e:
        print(
            f"{Colors.YELLOW}Warning: Log file write failed, logging disabled: {e}{Colors.NC}",
            file=sys.stderr,
        )
        _log_file = None


def print_message(color: str, message: str, stream: Optional[TextIO] = None) -> None:
    """Print colored message and log it"""
    print(f"{color}{message}{Colors.NC}", file=stream or sys.stdout)
    log(message)
