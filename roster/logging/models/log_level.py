from __future__ import annotations

from enum import Enum
from typing import Literal

LogLevelName = Literal['debug', 'info', 'warn', 'error']


class LogLevel(Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    @classmethod
    def to_level(cls, level_name: str) -> LogLevel | None:
        return cls.__members__.get(level_name.upper())


_SEVERITY = {level: rank for rank, level in enumerate(LogLevel)}
