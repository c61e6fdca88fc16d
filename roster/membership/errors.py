"""
Membership Error Hierarchy

Categorized exceptions for the membership monitor. Errors are classified by:
- Category: What kind of error (network, protocol, configuration, ...)
- Severity: How serious (transient, degraded, fatal)

Apart from lifecycle misuse, none of these escape the monitor: every
failure degrades toward relying on the next periodic resync.
"""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any


class ErrorSeverity(Enum):
    """How serious is this error?"""

    TRANSIENT = auto()
    """Connection blip, retry likely to succeed."""

    DEGRADED = auto()
    """Monitor keeps running with reduced guarantees."""

    FATAL = auto()
    """The requested operation cannot proceed."""


class ErrorCategory(Enum):
    """What kind of error is this?"""

    NETWORK = auto()
    """Connection drops, timeouts, refused connections."""

    PROTOCOL = auto()
    """Unparsable payloads stored under a known key."""

    CONFIGURATION = auto()
    """Store settings that the monitor depends on are missing."""

    CONSISTENCY = auto()
    """Post-resync view disagrees with what a notification implied."""

    LIFECYCLE = auto()
    """Monitor used in the wrong state."""


@dataclass
class MembershipError(Exception):
    """
    Base exception for membership errors.

    All membership errors carry:
    - message: Human-readable description
    - category: What kind of error
    - severity: How serious
    - context: Additional debugging info
    - cause: Original exception if wrapping
    """

    message: str
    category: ErrorCategory
    severity: ErrorSeverity
    context: dict[str, Any] = field(default_factory=dict)
    cause: BaseException | None = None

    def __str__(self) -> str:
        ctx = f" {self.context}" if self.context else ""
        cause = ""
        if self.cause:
            cause_str = str(self.cause)
            cause_type = type(self.cause).__name__
            if cause_str:
                cause = f" (caused by {cause_type}: {cause_str})"
            else:
                cause = f" (caused by {cause_type})"
        return f"[{self.category.name}/{self.severity.name}] {self.message}{ctx}{cause}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"category={self.category}, "
            f"severity={self.severity}, "
            f"context={self.context})"
        )

    def with_context(self, **kwargs: Any) -> 'MembershipError':
        """Add additional context to the error."""
        self.context.update(kwargs)
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            'error_type': self.__class__.__name__,
            'message': self.message,
            'category': self.category.name,
            'severity': self.severity.name,
            'context': self.context,
            'cause': str(self.cause) if self.cause else None,
        }


class TransientStoreError(MembershipError):
    """
    A store command failed after exhausting its retries.

    Connection drops and timeouts are retried at the connection layer;
    this only surfaces once the retry budget for one request is spent.
    """

    def __init__(
        self,
        command: str,
        attempts: int,
        cause: BaseException | None = None,
        **context: Any,
    ):
        super().__init__(
            message=f"Store command {command} failed after {attempts} attempt(s)",
            category=ErrorCategory.NETWORK,
            severity=ErrorSeverity.TRANSIENT,
            context={'command': command, 'attempts': attempts, **context},
            cause=cause,
        )


class MalformedRecordError(MembershipError):
    """Stored record under a known id could not be parsed."""

    def __init__(
        self,
        server_id: str,
        payload: str | bytes,
        cause: BaseException | None = None,
    ):
        if isinstance(payload, bytes):
            payload = payload.decode(errors="replace")

        preview = payload[:100]
        super().__init__(
            message=f"Malformed record for server {server_id}",
            category=ErrorCategory.PROTOCOL,
            severity=ErrorSeverity.DEGRADED,
            context={'server_id': server_id, 'preview': preview},
            cause=cause,
        )


class ConfigurationMismatchError(MembershipError):
    """Keyspace notifications are not enabled for the required event classes."""

    def __init__(
        self,
        current_flags: str,
        required_flags: str,
        cause: BaseException | None = None,
    ):
        super().__init__(
            message=(
                f"notify-keyspace-events is {current_flags!r}, "
                f"requires {required_flags!r}; relying on periodic resync"
            ),
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.DEGRADED,
            context={
                'current_flags': current_flags,
                'required_flags': required_flags,
            },
            cause=cause,
        )


class ConsistencyAssertionError(MembershipError):
    """A resync did not reflect the change a notification announced."""

    def __init__(
        self,
        server_id: str,
        event: str,
        expected_present: bool,
    ):
        expectation = "present" if expected_present else "absent"
        super().__init__(
            message=f"Server {server_id} expected {expectation} after {event}",
            category=ErrorCategory.CONSISTENCY,
            severity=ErrorSeverity.DEGRADED,
            context={
                'server_id': server_id,
                'event': event,
                'expected_present': expected_present,
            },
        )


class MonitorStateError(MembershipError):
    """Lifecycle operation requested in a state that does not allow it."""

    def __init__(self, operation: str, state: str):
        super().__init__(
            message=f"Cannot {operation} monitor in state {state}",
            category=ErrorCategory.LIFECYCLE,
            severity=ErrorSeverity.FATAL,
            context={'operation': operation, 'state': state},
        )
