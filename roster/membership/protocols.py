"""
Protocols for the collaborators the membership monitor talks to.

The owning application and the logger are both injected, so the monitor
never reaches for global state.
"""

from typing import Any, Awaitable, Mapping, Protocol, runtime_checkable

from .models import ServerRecord


@runtime_checkable
class LoggerProtocol(Protocol):
    """
    Protocol for structured async logging.

    Entries are msgspec models such as MonitorInfo or MonitorWarning.
    """

    async def log(self, entry: Any) -> None:
        ...


@runtime_checkable
class ApplicationProtocol(Protocol):
    """
    The hosting application, consumed only through these three calls.

    ``replace_servers`` swaps the whole routing view at once and may be
    either a plain function or a coroutine function.
    """

    def get_cur_server(self) -> ServerRecord:
        """Description of this node."""
        ...

    def get(self, key: str) -> Any:
        """Read an application setting, e.g. the current server state."""
        ...

    def replace_servers(
        self,
        servers: Mapping[str, ServerRecord],
    ) -> Awaitable[None] | None:
        """Replace the application's membership view."""
        ...
