"""
Error classification for hal engine invocations.

This module provides:
- LLMErrorType enum for categorizing errors
- ErrorClassifier for detecting error types from CLI output and deciding
  whether a failure is transient (worth retrying) or fatal
- Custom exception classes with error type information
"""

from __future__ import annotations

import re
from enum import Enum, auto
from typing import Optional, Union


class LLMErrorType(Enum):
    """
    Classification of agent CLI errors.

    Used to determine appropriate handling strategy (retry, stop, notify user, etc.)
    """

    # Authentication errors - require user action
    AUTH_REQUIRED = auto()      # Not logged in / bad credentials

    # Transient errors - recoverable with retry
    RATE_LIMIT = auto()         # 429 / usage limits
    SERVER_OVERLOADED = auto()  # 529/503 errors
    SERVER_ERROR = auto()       # Other 5xx errors
    NETWORK = auto()            # Connection resets, I/O timeouts

    # Runtime-enforced outcomes
    EXECUTION_TIMEOUT = auto()  # Our own per-invocation deadline elapsed
    CANCELLED = auto()          # Caller cancelled the run

    # Client errors
    CLI_CRASH = auto()          # CLI exited non-zero without a known signature
    CLI_NOT_FOUND = auto()      # CLI binary not installed

    # Unknown
    UNKNOWN = auto()            # Unclassified error


_RETRYABLE_TYPES = (
    LLMErrorType.RATE_LIMIT,
    LLMErrorType.SERVER_OVERLOADED,
    LLMErrorType.SERVER_ERROR,
    LLMErrorType.NETWORK,
)


class LLMError(Exception):
    """
    Base exception for engine invocation errors.

    Includes error type classification for handling decisions.
    """

    def __init__(
        self,
        message: str,
        error_type: LLMErrorType = LLMErrorType.UNKNOWN,
        stderr: str = "",
        returncode: int = -1,
        recoverable: bool = False,
        output: str = "",
    ) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.stderr = stderr
        self.returncode = returncode
        self.recoverable = recoverable
        # Whatever the engine produced before it failed
        self.output = output

    @property
    def requires_user_action(self) -> bool:
        """Check if this error requires user intervention."""
        return self.error_type in (
            LLMErrorType.AUTH_REQUIRED,
            LLMErrorType.CLI_NOT_FOUND,
        )

    @property
    def should_retry(self) -> bool:
        """Check if this error is worth retrying."""
        return self.error_type in _RETRYABLE_TYPES


class ExecutionTimeoutError(LLMError):
    """Raised when an invocation exceeds the runtime's own deadline.

    Never retried: a command that hung once will hang again.
    """

    def __init__(
        self, message: str, timeout_seconds: float, stderr: str = "", output: str = ""
    ) -> None:
        super().__init__(
            message,
            error_type=LLMErrorType.EXECUTION_TIMEOUT,
            stderr=stderr,
            recoverable=False,
            output=output,
        )
        self.timeout_seconds = timeout_seconds


class ExecutionCancelledError(LLMError):
    """Raised when the caller cancels the run while an invocation is in flight."""

    def __init__(
        self, message: str = "execution cancelled", stderr: str = "", output: str = ""
    ) -> None:
        super().__init__(
            message,
            error_type=LLMErrorType.CANCELLED,
            stderr=stderr,
            recoverable=False,
            output=output,
        )


class CLINotFoundError(LLMError):
    """Raised when CLI binary is not found."""

    def __init__(self, cli_name: str, message: Optional[str] = None) -> None:
        super().__init__(
            message or f"{cli_name} CLI not found. Please install it first.",
            error_type=LLMErrorType.CLI_NOT_FOUND,
            recoverable=False,
        )
        self.cli_name = cli_name


class EngineNotFoundError(Exception):
    """Raised when an engine name is not registered."""

    def __init__(self, name: str, supported: list[str]) -> None:
        super().__init__(f"unknown engine: {name} (supported: {', '.join(supported)})")
        self.name = name
        self.supported = supported


class ErrorClassifier:
    """
    Classifies errors from agent CLI output.

    Uses pattern matching on stderr/stdout and on error messages to determine
    the error type and whether a failure is transient.
    """

    AUTH_PATTERNS = [
        r"unauthorized",
        r"not\s+logged\s+in",
        r"login\s+required",
        r"authentication\s+required",
        r"please\s+log\s+in",
        r"invalid\s+api\s+key",
    ]

    RATE_LIMIT_PATTERNS = [
        r"rate.?limit",
        r"usage\s+limit\s+reached",
        r"too\s+many\s+requests",
        r"\b429\b",
    ]

    OVERLOAD_PATTERNS = [
        r"\b529\b",
        r"\b503\b",
        r"overloaded",
        r"service\s+unavailable",
    ]

    SERVER_ERROR_PATTERNS = [
        r"\b502\b",
        r"\b500\b",
        r"bad\s+gateway",
        r"internal\s+server\s+error",
    ]

    # Transport-level timeouts only. The runtime's own deadline is reported
    # as "timed out" and must never match here.
    NETWORK_PATTERNS = [
        r"connection\s+reset",
        r"connection\s+refused",
        r"i/o\s+timeout",
        r"\btimeout\b",
        r"temporary\s+failure",
        r"network\s+(error|unreachable)",
    ]

    NON_RETRYABLE_PATTERNS = [
        r"timed\s+out\s+after",
        r"syntax\s+error",
        r"not\s+found",
        r"unknown\s+engine",
        r"permission\s+denied",
        r"forbidden",
        r"bad\s+request",
        r"\b40[0134]\b",
    ]

    @classmethod
    def classify(
        cls,
        stderr: str,
        stdout: str = "",
        returncode: int = -1,
    ) -> LLMErrorType:
        """
        Classify an agent CLI failure based on output.

        Args:
            stderr: Standard error output from CLI
            stdout: Standard output from CLI
            returncode: Process return code

        Returns:
            LLMErrorType classification
        """
        combined = f"{stderr} {stdout}"

        # Auth errors first (they need the user, not a retry)
        if cls._matches_any(stderr, cls.AUTH_PATTERNS):
            return LLMErrorType.AUTH_REQUIRED

        if cls._matches_any(combined, cls.RATE_LIMIT_PATTERNS):
            return LLMErrorType.RATE_LIMIT

        if cls._matches_any(combined, cls.OVERLOAD_PATTERNS):
            return LLMErrorType.SERVER_OVERLOADED

        if cls._matches_any(combined, cls.SERVER_ERROR_PATTERNS):
            return LLMErrorType.SERVER_ERROR

        if cls._matches_any(combined, cls.NETWORK_PATTERNS):
            return LLMErrorType.NETWORK

        if returncode != 0:
            return LLMErrorType.CLI_CRASH

        return LLMErrorType.UNKNOWN

    @classmethod
    def is_retryable(cls, error: Union[BaseException, str, None]) -> bool:
        """
        Decide whether a failure is transient and worth retrying.

        Runtime deadlines and cancellations are never retryable, whatever
        their message says. Everything else is matched against the known
        transient signatures; unknown failures are not retried.

        Args:
            error: The exception (or its message) to classify.

        Returns:
            True if the failure should be retried.
        """
        if error is None:
            return False

        if isinstance(error, (ExecutionTimeoutError, ExecutionCancelledError, CLINotFoundError)):
            return False

        message = str(error)

        if cls._matches_any(message, cls.NON_RETRYABLE_PATTERNS):
            return False

        return (
            cls._matches_any(message, cls.RATE_LIMIT_PATTERNS)
            or cls._matches_any(message, cls.OVERLOAD_PATTERNS)
            or cls._matches_any(message, cls.SERVER_ERROR_PATTERNS)
            or cls._matches_any(message, cls.NETWORK_PATTERNS)
        )

    @classmethod
    def _matches_any(cls, text: str, patterns: list[str]) -> bool:
        """Check if text matches any of the given patterns."""
        for pattern in patterns:
            if re.search(pattern, text, re.IGNORECASE):
                return True
        return False

    @classmethod
    def create_error(
        cls,
        error_type: LLMErrorType,
        message: str,
        stderr: str = "",
        returncode: int = -1,
        output: str = "",
    ) -> LLMError:
        """
        Create an exception for the given error type.

        Args:
            error_type: The classified error type
            message: Human-readable error message
            stderr: Raw stderr output
            returncode: Process return code
            output: Engine output captured before the failure

        Returns:
            LLMError carrying the classification
        """
        return LLMError(
            message,
            error_type=error_type,
            stderr=stderr,
            returncode=returncode,
            recoverable=error_type in _RETRYABLE_TYPES,
            output=output,
        )


_INSTALL_HINTS = {
    "claude": "npm i -g @anthropic-ai/claude-code",
    "codex": "npm i -g @openai/codex",
    "pi": "npm i -g @mariozechner/pi-coding-agent",
    "amp": "npm i -g @sourcegraph/amp",
}


def get_user_action_message(error: LLMError) -> Optional[str]:
    """
    Generate a user-friendly message explaining how to fix the error.

    Args:
        error: The error that occurred

    Returns:
        Formatted message with instructions, or None when the error does
        not need the user.
    """
    if not error.requires_user_action:
        return None

    if error.error_type == LLMErrorType.CLI_NOT_FOUND:
        cli_name = getattr(error, "cli_name", "the CLI")
        hint = _INSTALL_HINTS.get(cli_name, f"install {cli_name} and make sure it is on PATH")
        return (
            f"\n{cli_name.upper()} CLI NOT INSTALLED\n\n"
            f"hal needs the {cli_name} CLI to run this engine.\n\n"
            f"To install, run:\n\n    {hint}\n\n"
            "Then re-run your command.\n"
        )

    if error.error_type == LLMErrorType.AUTH_REQUIRED:
        return (
            "\nAGENT CLI AUTHENTICATION REQUIRED\n\n"
            "The engine CLI reported that it is not logged in.\n"
            "Run the CLI once interactively to authenticate, then re-run your command.\n"
        )

    return None
