import datetime
import threading
from types import FrameType
from typing import Any, Dict, Generic, TypeVar

import msgspec


T = TypeVar('T')


def _utc_now() -> str:
    return datetime.datetime.now(datetime.UTC).isoformat()


class Log(msgspec.Struct, Generic[T], kw_only=True):
    """An entry together with where and when it was logged."""

    entry: T
    filename: str
    function_name: str
    line_number: int
    thread_id: int = msgspec.field(
        default_factory=threading.get_native_id,
    )
    timestamp: str = msgspec.field(
        default_factory=_utc_now,
    )

    @classmethod
    def at_frame(cls, entry: T, frame: FrameType) -> "Log[T]":
        code = frame.f_code
        return cls(
            entry=entry,
            filename=code.co_filename,
            function_name=code.co_name,
            line_number=frame.f_lineno,
        )

    def template_context(self) -> Dict[str, Any]:
        return {
            "filename": self.filename,
            "function_name": self.function_name,
            "line_number": self.line_number,
            "thread_id": self.thread_id,
            "timestamp": self.timestamp,
        }
