"""
httpmock Errors

Exception taxonomy and failure records.

Problems found while serving a request are never raised across the dispatch
boundary. They are recorded on the owning Mock as Failure entries so a test
can inspect them after the fact. Exceptions are reserved for misuse of the
API (bad configuration, invalid builder calls, a listener that cannot start).
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class HttpMockError(Exception):
    """Base class for all httpmock exceptions."""


class ConfigurationError(HttpMockError):
    """Raised when a ServerConfig is invalid."""


class ExpectationError(HttpMockError):
    """Raised on invalid use of an Expectation builder."""


class ServerError(HttpMockError):
    """Raised when the listening server cannot be started or stopped."""


class ClientDisconnected(ConnectionError):
    """Raised into a WriteFailed when the client hung up before the response was written."""


class FailureKind(str, Enum):
    """Categories of recorded failures."""

    NO_MATCH = "no_match"
    WRITE_FAILED = "write_failed"
    UNEXPECTED_FAULT = "unexpected_fault"
    GENERIC = "generic"


@dataclass(frozen=True)
class Failure:
    """A single recorded failure."""

    message: str
    kind: FailureKind = FailureKind.GENERIC
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def __str__(self) -> str:
        return self.message

    def to_dict(self):
        return {
            'kind': self.kind.value,
            'message': self.message,
            'timestamp': self.timestamp
        }


@dataclass(frozen=True)
class WriteFailed:
    """
    Result of a response write that could not complete.

    Returned (not raised) by ResponseWriter.write so the caller can record it
    against the Mock.
    """

    cause: BaseException
    stage: str = "body"  # start, body

    def __str__(self) -> str:
        return f"write failed during {self.stage}: {self.cause!r}"


def describe_exception(exc: Optional[BaseException]) -> str:
    """Render an exception as `Type: message` for diagnostics."""
    if exc is None:
        return "unknown error"
    text = str(exc)
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__
