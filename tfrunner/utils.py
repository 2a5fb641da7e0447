"""
Utility functions for tfrunner.

Includes logging setup, console output helpers and debug directory listings.
"""

import json
import logging
import os
import stat
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.logging import RichHandler


# Global console for pretty output
console = Console(stderr=True)


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "structured",
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """
    Set up logging for a job run.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: "structured" (JSON) or "pretty" (human-readable)
        log_file: Optional path of a log file, written in the same format

    Returns:
        Configured logger
    """
    logger = logging.getLogger("tfrunner")
    logger.setLevel(getattr(logging, log_level.upper()))
    logger.handlers = []  # Clear existing handlers
    logger.propagate = False

    if log_format == "pretty":
        console_handler = RichHandler(console=console, rich_tracebacks=True, show_time=False)
    else:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(StructuredFormatter())

    logger.addHandler(console_handler)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        if log_format == "structured":
            file_handler.setFormatter(StructuredFormatter())
        else:
            file_handler.setFormatter(
                logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            )
        logger.addHandler(file_handler)

    return logger


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add extra fields if present
        if hasattr(record, "step"):
            log_data["step"] = record.step
        if hasattr(record, "event"):
            log_data["event"] = record.event
        if hasattr(record, "metadata"):
            log_data["metadata"] = record.metadata

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def list_directory_tree(root: Path) -> List[str]:
    """
    List a directory tree in an `ls -lR`-like form.

    Args:
        root: Directory to list

    Returns:
        One line per entry: mode, size and path relative to root.
        Unreadable entries are reported inline instead of raising.
    """
    root = Path(root)
    if not root.exists():
        return [f"{root}: does not exist"]

    lines = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in dirnames + sorted(filenames):
            path = Path(dirpath) / name
            try:
                info = path.lstat()
            except OSError as e:
                lines.append(f"?????????? {'?':>10} {path.relative_to(root)} ({e.strerror})")
                continue
            lines.append(
                f"{stat.filemode(info.st_mode)} {info.st_size:>10} {path.relative_to(root)}"
            )
    return lines


def log_directory_tree(logger: logging.Logger, root: Path, step: str) -> None:
    """Log a directory listing at debug level."""
    if not logger.isEnabledFor(logging.DEBUG):
        return

    logger.debug(
        f"Contents of {root}",
        extra={
            "step": step,
            "event": "directory_listing",
            "metadata": {"path": str(root), "entries": list_directory_tree(root)},
        },
    )


def format_duration(seconds: float) -> str:
    """
    Format duration in seconds to human-readable string.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted string (e.g., "1m 23s", "45s")
    """
    if seconds < 60:
        return f"{int(seconds)}s"

    minutes = int(seconds // 60)
    remaining_seconds = int(seconds % 60)

    if minutes < 60:
        return f"{minutes}m {remaining_seconds}s"

    hours = minutes // 60
    remaining_minutes = minutes % 60
    return f"{hours}h {remaining_minutes}m {remaining_seconds}s"


def print_banner(title: str) -> None:
    """
    Print a banner to console.

    Args:
        title: Banner title
    """
    console.rule(f"[bold blue]{title}[/bold blue]")


def print_success(message: str) -> None:
    """Print success message to console."""
    console.print(f"[bold green]✓[/bold green] {message}")


def print_error(message: str) -> None:
    """Print error message to console."""
    console.print(f"[bold red]✗[/bold red] {message}")


def print_warning(message: str) -> None:
    """Print warning message to console."""
    console.print(f"[bold yellow]⚠[/bold yellow] {message}")


def print_info(message: str) -> None:
    """Print info message to console."""
    console.print(f"[bold cyan]ℹ[/bold cyan] {message}")
