# Copyright (c) 2024 Converge Contributors
# MIT License

"""
Converge Error Classes.

All custom exceptions for clear error handling and exit codes.
Only parse and inventory errors abort a run; handler, connection and timeout
errors are caught per host and turned into results.
"""

from __future__ import annotations

import enum


class ExitCode(enum.IntEnum):
    """Process exit codes for the converge CLI."""

    SUCCESS = 0
    GENERIC_ERROR = 1
    HOST_FAILED = 2
    PARSE_ERROR = 3
    UNKNOWN_GROUP = 4
    KEYBOARD_INTERRUPT = 130


class ConvergeError(Exception):
    """Base exception for all Converge errors."""

    exit_code: int = ExitCode.GENERIC_ERROR

    def __init__(self, message: str, details: str | None = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}\n  Details: {self.details}"
        return self.message


class ParseError(ConvergeError):
    """Error parsing a play, inventory, facts or config file."""

    exit_code: int = ExitCode.PARSE_ERROR

    def __init__(
        self,
        message: str,
        file_path: str | None = None,
        details: str | None = None,
    ) -> None:
        self.file_path = file_path
        location = f" in {file_path}" if file_path else ""
        super().__init__(f"Parse error{location}: {message}", details)


class ConditionSyntaxError(ParseError):
    """A task condition could not be parsed."""

    def __init__(self, condition: str, reason: str) -> None:
        self.condition = condition
        super().__init__(f"Invalid condition {condition!r}", details=reason)


class InventoryError(ParseError):
    """Error in an inventory source."""

    def __init__(self, message: str, file_path: str | None = None) -> None:
        super().__init__(message, file_path=file_path)


class UnknownGroupError(ConvergeError):
    """A host selector names a group or host the inventory does not define."""

    exit_code: int = ExitCode.UNKNOWN_GROUP

    def __init__(self, selector: str, term: str | None = None) -> None:
        self.selector = selector
        self.term = term or selector
        msg = f"Unknown group or host '{self.term}'"
        if term and term != selector:
            msg += f" in selector '{selector}'"
        super().__init__(msg)


class HandlerError(ConvergeError):
    """Raised by a module handler when it cannot bring a host into state."""

    exit_code: int = ExitCode.HOST_FAILED

    def __init__(
        self,
        message: str,
        rc: int | None = None,
        stderr: str | None = None,
    ) -> None:
        self.rc = rc
        self.stderr = stderr

        details_parts = []
        if rc is not None:
            details_parts.append(f"rc={rc}")
        if stderr:
            details_parts.append(f"stderr: {stderr[:200]}")

        super().__init__(message, "; ".join(details_parts) if details_parts else None)


class ConnectionError(ConvergeError):
    """Error connecting to a remote host."""

    exit_code: int = ExitCode.HOST_FAILED

    def __init__(
        self,
        host: str,
        message: str,
        connection_type: str | None = None,
        details: str | None = None,
    ) -> None:
        self.host = host
        self.connection_type = connection_type
        conn_info = f" ({connection_type})" if connection_type else ""
        super().__init__(f"Connection to {host}{conn_info} failed: {message}", details)


class TaskTimeoutError(ConvergeError):
    """A handler invocation exceeded its time budget."""

    exit_code: int = ExitCode.HOST_FAILED

    def __init__(self, task: str, timeout: float) -> None:
        self.task = task
        self.timeout = timeout
        super().__init__(f"Task '{task}' timed out after {timeout:g}s")
