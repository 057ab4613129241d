"""
Error classes for runtime-init.

Every failure raised by the onboarding engine derives from RuntimeInitError,
so callers at the CLI boundary can catch one type.

Retry contract:
- The retrier treats every exception as retryable and raises RetryExhausted
  (carrying the last cause) once the attempt budget is spent.
- Stages convert whatever escapes the retrier into a PhaseError that names
  the phase and operation, then the pipeline stops.

A hash mismatch is not an error: verify_hash() returns False and the
install stage decides what to do with it.
"""

from typing import Any, Optional


class RuntimeInitError(Exception):
    """Base exception for runtime-init."""
    pass


class ConfigError(RuntimeInitError):
    """Declarative configuration could not be loaded or is invalid."""
    pass


class RetryExhausted(RuntimeInitError):
    """
    All attempts of a retried operation failed.

    Attributes:
        attempts: Number of attempts made
        last_error: Exception raised by the final attempt
    """

    def __init__(self, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Retries exhausted after {attempts} attempt(s): {last_error}")


class UnknownLocationType(RuntimeInitError):
    """A URI scheme that no fetcher can resolve."""

    def __init__(self, scheme: str):
        self.scheme = scheme
        super().__init__(f"Unknown url type: '{scheme}' is not a known location type")


class CommandFailed(RuntimeInitError):
    """
    A shell command exited non-zero.

    Attributes:
        command: The command line that was run
        exit_code: Process exit status
        output: Combined stdout/stderr captured from the process
    """

    def __init__(self, command: str, exit_code: int, output: str):
        self.command = command
        self.exit_code = exit_code
        self.output = output
        detail = output.strip()
        message = f"Command failed ({exit_code}): {command}"
        if detail:
            message = f"{message}\n{detail}"
        super().__init__(message)


class ReadyCheckFailed(RuntimeInitError):
    """The management plane never reported ready within the polling budget."""
    pass


class UndefinedVariable(RuntimeInitError):
    """A template referenced a variable with no resolved value."""

    def __init__(self, name: Optional[str], detail: str = ""):
        self.name = name
        message = f"Undefined template variable: {name}" if name else "Undefined template variable"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class TransportError(RuntimeInitError):
    """Network-level failure: connection refused, DNS, TLS, timeout."""
    pass


class ApplicationError(RuntimeInitError):
    """
    A remote endpoint answered with a non-2xx status.

    Attributes:
        code: HTTP status code
        body: Parsed response body (JSON or text)
    """

    def __init__(self, message: str, code: int, body: Any = None):
        self.code = code
        self.body = body
        super().__init__(f"{message} (status {code})")


class VerificationFailed(RuntimeInitError):
    """An artifact failed verification (hash mismatch or missing required hash)."""
    pass


class UnknownCloudEnvironment(RuntimeInitError):
    """No cloud client is registered for the requested provider environment."""
    pass


class PhaseError(RuntimeInitError):
    """
    A phase aborted because one of its operations failed.

    Attributes:
        phase: Phase (stage) name, e.g. pre_onboard_enabled
        operation: Operation name within the phase
        cause: Underlying exception
    """

    def __init__(self, phase: str, operation: str, cause: BaseException):
        self.phase = phase
        self.operation = operation
        self.cause = cause
        super().__init__(f"Phase '{phase}' operation '{operation}' failed: {cause}")
