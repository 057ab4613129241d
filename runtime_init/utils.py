"""
Utility functions for runtime-init.

Includes logging, retries, artifact verification, and file operations.
"""

import asyncio
import hashlib
import hmac
import inspect
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Union

from rich.console import Console
from rich.logging import RichHandler

from runtime_init.errors import RetryExhausted


# Global console for pretty output
console = Console()

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_INTERVAL = 5000  # milliseconds

_HEX_DIGEST = re.compile(r"^[0-9a-fA-F]{64}$")


def setup_logging(
    log_file: Path,
    log_level: str = "INFO",
    log_format: str = "structured",
    console_output: bool = True,
) -> logging.Logger:
    """
    Set up logging for an onboarding run.

    Args:
        log_file: Path to log file
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: "structured" (JSON) or "pretty" (human-readable)
        console_output: Also log to console

    Returns:
        Configured logger
    """
    verify_directory(log_file.parent)

    logger = logging.getLogger("runtime_init")
    logger.setLevel(getattr(logging, log_level.upper()))
    logger.handlers = []  # Clear existing handlers

    file_handler = logging.FileHandler(log_file)
    if log_format == "structured":
        file_handler.setFormatter(StructuredFormatter())
    else:
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    logger.addHandler(file_handler)

    if console_output:
        if log_format == "pretty":
            console_handler = RichHandler(rich_tracebacks=True, show_time=False)
        else:
            console_handler = logging.StreamHandler()
            console_handler.setFormatter(
                logging.Formatter("%(levelname)s: %(message)s")
            )
        logger.addHandler(console_handler)

    return logger


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add extra fields if present
        if hasattr(record, "stage"):
            log_data["stage"] = record.stage
        if hasattr(record, "event"):
            log_data["event"] = record.event
        if hasattr(record, "metadata"):
            log_data["metadata"] = record.metadata

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry policy attached to a call site.

    Attributes:
        max_retries: Total attempts; values below 1 still make one attempt
        retry_interval: Delay between attempts in milliseconds
        backoff_multiplier: Factor applied to the delay after each failure
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    retry_interval: int = DEFAULT_RETRY_INTERVAL
    backoff_multiplier: float = 1.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.retry_interval < 0:
            raise ValueError(f"retry_interval must be >= 0, got {self.retry_interval}")
        if self.backoff_multiplier < 1.0:
            raise ValueError(f"backoff_multiplier must be >= 1.0, got {self.backoff_multiplier}")

    @property
    def attempts(self) -> int:
        return max(1, self.max_retries)

    def override(
        self,
        max_retries: Optional[int] = None,
        retry_interval: Optional[int] = None,
    ) -> "RetryPolicy":
        """Return a copy with the given fields replaced when not None."""
        return RetryPolicy(
            max_retries=self.max_retries if max_retries is None else max_retries,
            retry_interval=self.retry_interval if retry_interval is None else retry_interval,
            backoff_multiplier=self.backoff_multiplier,
        )

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]], default: Optional["RetryPolicy"] = None) -> "RetryPolicy":
        """Build a policy from a camelCase mapping, falling back to `default`."""
        base = default or cls()
        data = data or {}
        return cls(
            max_retries=int(data.get("maxRetries", base.max_retries)),
            retry_interval=int(data.get("retryInterval", base.retry_interval)),
            backoff_multiplier=float(data.get("backoffMultiplier", base.backoff_multiplier)),
        )


async def retrier(
    func: Callable[..., Union[Awaitable[Any], Any]],
    *args: Any,
    policy: Optional[RetryPolicy] = None,
    logger: Optional[logging.Logger] = None,
    **kwargs: Any,
) -> Any:
    """
    Call func(*args, **kwargs) until it succeeds or the policy is spent.

    func may be a coroutine function or a plain callable. Every exception is
    retryable; callers screen errors before invoking if they need otherwise.
    Attempts are not deduplicated, so side effects may repeat.

    Args:
        func: Operation to call
        policy: RetryPolicy (defaults to RetryPolicy())
        logger: Logger for retry messages

    Returns:
        Result of the first successful call

    Raises:
        RetryExhausted: If every attempt failed (wraps the last error)
    """
    policy = policy or RetryPolicy()
    log = logger or logging.getLogger(__name__)
    attempts = policy.attempts
    wait_seconds = policy.retry_interval / 1000.0
    name = getattr(func, "__qualname__", repr(func))

    for attempt in range(1, attempts + 1):
        try:
            result = func(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
            return result

        except Exception as e:
            if attempt == attempts:
                log.debug(f"{name}: all {attempts} attempts failed: {e}")
                raise RetryExhausted(attempts, e) from e

            log.debug(
                f"{name}: attempt {attempt}/{attempts} failed: {e}. "
                f"Retrying in {wait_seconds:.3f}s..."
            )
            await asyncio.sleep(wait_seconds)
            wait_seconds *= policy.backoff_multiplier


def get_file_checksum(file_path: Path) -> str:
    """
    Calculate SHA256 checksum of file.

    Args:
        file_path: Path to file

    Returns:
        Hex digest of SHA256 checksum
    """
    sha256 = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


def verify_hash(file_path: Union[str, Path], expected_hash: str) -> bool:
    """
    Check a file's SHA256 digest against an expected hex value.

    Comparison is case-insensitive and constant-time. A malformed expected
    hash yields False; only failure to read the file raises.

    Args:
        file_path: Path to the downloaded artifact
        expected_hash: Expected SHA256 hex digest

    Returns:
        True if the digests match, else False
    """
    actual = get_file_checksum(Path(file_path))
    if not isinstance(expected_hash, str) or not _HEX_DIGEST.match(expected_hash.strip()):
        return False
    return hmac.compare_digest(actual, expected_hash.strip().lower())


def verify_directory(directory: Union[str, Path]) -> Path:
    """
    Ensure a directory exists.

    Creates it (and parents) if absent; an existing directory keeps its
    permissions.

    Args:
        directory: Directory path

    Returns:
        The directory as a Path
    """
    path = Path(directory)
    if not path.is_dir():
        path.mkdir(parents=True, exist_ok=True)
    return path


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
