from enum import Enum

import msgspec


class ServerState(str, Enum):
    """Lifecycle state of a node, mirrored from the owning application."""

    STARTING = "starting"
    UP = "up"
    DRAINING = "draining"
    DOWN = "down"


class ServerRecord(msgspec.Struct, kw_only=True, rename="camel"):
    """
    Liveness and description record for one node.

    Written only by the node it describes. Stored as JSON under
    ``<prefix><id>`` with camelCase keys (``serverType``, ``clientPort``).
    """

    id: str
    server_type: str
    host: str
    port: int
    client_port: int | None = None
    frontend: bool = False
    state: ServerState = ServerState.UP

    def to_json(self) -> bytes:
        return msgspec.json.encode(self)

    @classmethod
    def from_json(cls, payload: str | bytes) -> "ServerRecord":
        return _record_decoder.decode(payload)


_record_decoder = msgspec.json.Decoder(ServerRecord)
