from __future__ import annotations

from enum import Enum


class KeyEvent(Enum):
    """Keyspace notification payloads the reconciler acts on."""

    SET = "set"          # created or overwritten: joined or updated
    DEL = "del"          # explicitly removed: left
    EXPIRED = "expired"  # TTL lapsed: presumed crashed
    EXPIRE = "expire"    # TTL refreshed only: no-op

    @classmethod
    def parse(cls, message: str | bytes) -> KeyEvent | None:
        if isinstance(message, bytes):
            message = message.decode(errors="replace")

        try:
            return cls(message)

        except ValueError:
            return None

    @property
    def is_removal(self) -> bool:
        return self in (KeyEvent.DEL, KeyEvent.EXPIRED)
