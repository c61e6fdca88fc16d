import contextvars
from typing import List, Literal

from roster.logging.models import LogLevel, LogLevelName
from .stream_type import StreamType


LogOutput = Literal['stdout', 'stderr']

_global_log_level = contextvars.ContextVar("_global_log_level", default=LogLevel.INFO)
_global_disabled_loggers = contextvars.ContextVar("_global_disabled_loggers", default=[])
_global_log_output_type = contextvars.ContextVar("_global_log_level_type", default=StreamType.STDOUT)


class LoggingConfig:
    def __init__(self) -> None:
        self._log_level: contextvars.ContextVar[LogLevel] = _global_log_level
        self._log_output_type: contextvars.ContextVar[StreamType] = _global_log_output_type

        self._disabled_loggers: contextvars.ContextVar[List[str]] = (
            _global_disabled_loggers
        )

    def update(
        self,
        log_level: LogLevelName | None = None,
        log_output: LogOutput | None = None,
        disabled_loggers: List[str] | None = None,
    ):
        if log_level:
            level = LogLevel.to_level(log_level)
            if level is None:
                raise ValueError(f"Unknown log level {log_level!r}")

            self._log_level.set(level)

        if log_output:
            self._log_output_type.set(
                StreamType.STDOUT if log_output == 'stdout' else StreamType.STDERR
            )

        if disabled_loggers is not None:
            self._disabled_loggers.set(list(disabled_loggers))

    def enabled(self, logger_name: str, log_level: LogLevel) -> bool:
        disabled_loggers = self._disabled_loggers.get()
        current_log_level = self._log_level.get()
        return logger_name not in disabled_loggers and (
            log_level.severity >= current_log_level.severity
        )

    @property
    def level(self):
        return self._log_level.get()

    @property
    def output(self):
        return self._log_output_type.get()
