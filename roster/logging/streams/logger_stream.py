import asyncio
import functools
import io
import os
import pathlib
import sys
from collections import defaultdict
from typing import (
    Callable,
    Dict,
    TypeVar,
)

import msgspec

from roster.logging.config import LoggingConfig, StreamType
from roster.logging.models import Entry, Log

from .protocol import LoggerProtocol

T = TypeVar('T', bound=Entry)


DEFAULT_TEMPLATE = "{timestamp} - {level} - {thread_id} - {filename}:{function_name}.{line_number} - {message}"
ERROR_TEMPLATE = "{timestamp} - {level} - {thread_id}.{filename}:{function_name}.{line_number} - {error}"


class LoggerStream:
    def __init__(
        self,
        name: str | None = None,
        template: str | None = None,
        filename: str | None = None,
        directory: str | None = None,
    ) -> None:
        if name is None:
            name = "default"

        self._name = name
        self._default_template = template
        self._default_logfile = filename
        self._default_log_directory = directory

        self._init_lock = asyncio.Lock()
        self._stream_writers: Dict[StreamType, asyncio.StreamWriter | None] = {}
        self._stream_files: Dict[StreamType, io.TextIOBase] = {}
        self._duplicated: set[StreamType] = set()
        self._loop: asyncio.AbstractEventLoop | None = None

        self._files: Dict[str, io.FileIO] = {}
        self._file_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._cwd: str | None = None

        self._config = LoggingConfig()
        self._initialized: bool = False
        self._closed = False

    @property
    def name(self):
        return self._name

    async def initialize(self):

        async with self._init_lock:

            if self._initialized:
                return

            if self._loop is None:
                self._loop = asyncio.get_event_loop()

            if self._cwd is None:
                self._cwd = await self._loop.run_in_executor(
                    None,
                    os.getcwd,
                )

            for stream_type, source in (
                (StreamType.STDOUT, sys.stdout),
                (StreamType.STDERR, sys.stderr),
            ):
                if self._stream_writers.get(stream_type) is None:
                    await self._open_stream(stream_type, source)

            self._initialized = True
            self._closed = False

    async def _open_stream(
        self,
        stream_type: StreamType,
        source: io.TextIOBase,
    ):
        try:
            duplicate = await self._dup(source)

        except (OSError, ValueError):
            # In-memory streams have no descriptor to duplicate.
            self._stream_files[stream_type] = source
            self._stream_writers[stream_type] = None
            return

        self._stream_files[stream_type] = duplicate
        self._duplicated.add(stream_type)

        try:
            transport, protocol = await self._loop.connect_write_pipe(
                lambda: LoggerProtocol(), duplicate
            )

        except (ValueError, OSError):
            # Regular files (e.g. redirected output) cannot back a pipe
            # transport, so those are written through the executor instead.
            self._stream_writers[stream_type] = None
            return

        self._stream_writers[stream_type] = asyncio.StreamWriter(
            transport,
            protocol,
            None,
            self._loop,
        )

    async def _dup(self, source: io.TextIOBase):
        fileno = await self._loop.run_in_executor(
            None,
            source.fileno,
        )

        duplicate = await self._loop.run_in_executor(
            None,
            os.dup,
            fileno,
        )

        return await self._loop.run_in_executor(
            None,
            functools.partial(
                os.fdopen,
                duplicate,
                mode='w',
            )
        )

    async def log(
        self,
        entry: T | Log[T],
        template: str | None = None,
        path: str | None = None,
        filter: Callable[[T], bool] | None = None,
    ):
        filename: str | None = None
        directory: str | None = None

        if path:
            logfile_path = pathlib.Path(path)
            is_logfile = len(logfile_path.suffix) > 0

            filename = logfile_path.name if is_logfile else None
            directory = str(logfile_path.parent.absolute()) if is_logfile else str(logfile_path.absolute())

        if template is None:
            template = self._default_template

        if filename is None:
            filename = self._default_logfile

        if directory is None:
            directory = self._default_log_directory

        if filename or directory:
            await self._log_to_file(
                entry,
                filename=filename,
                directory=directory,
                filter=filter,
            )

        else:
            await self._log(
                entry,
                template=template,
                filter=filter,
            )

    async def _log(
        self,
        entry_or_log: T | Log[T],
        template: str | None = None,
        filter: Callable[[T], bool] | None = None,
    ):
        entry = self._unwrap(entry_or_log)

        if self._config.enabled(self._name, entry.level) is False:
            return

        if filter and filter(entry) is False:
            return

        if self._initialized is False:
            await self.initialize()

        if template is None:
            template = DEFAULT_TEMPLATE

        context = self._as_log(entry_or_log).template_context()

        output = self._config.output
        stream_writer = self._stream_writers.get(output)

        try:
            line = entry.to_template(
                template,
                context=context,
            ) + "\n"

            if stream_writer is None:
                await self._loop.run_in_executor(
                    None,
                    self._write_line,
                    self._stream_files[output],
                    line,
                )

            elif stream_writer.is_closing() is False:
                stream_writer.write(line.encode())
                await stream_writer.drain()

        except Exception as err:
            stderr = self._stream_files.get(StreamType.STDERR)
            if stderr is not None and stderr.closed is False:
                await self._loop.run_in_executor(
                    None,
                    self._write_line,
                    stderr,
                    entry.to_template(
                        ERROR_TEMPLATE,
                        context={
                            **context,
                            "error": str(err),
                        },
                    ) + "\n",
                )

    async def _log_to_file(
        self,
        entry_or_log: T | Log[T],
        filename: str | None = None,
        directory: str | None = None,
        filter: Callable[[T], bool] | None = None,
    ):
        entry = self._unwrap(entry_or_log)

        if self._config.enabled(self._name, entry.level) is False:
            return

        if filter and filter(entry) is False:
            return

        if self._initialized is False:
            await self.initialize()

        logfile_path = await self.open_file(
            filename,
            directory=directory,
        )

        log = self._as_log(entry_or_log)

        async with self._file_locks[logfile_path]:
            await self._loop.run_in_executor(
                None,
                self._write_to_file,
                log,
                logfile_path,
            )

    async def open_file(
        self,
        filename: str | None,
        directory: str | None = None,
    ) -> str:
        if self._loop is None:
            self._loop = asyncio.get_event_loop()

        logfile_path = self._to_logfile_path(filename, directory=directory)

        async with self._file_locks[logfile_path]:
            if self._files.get(logfile_path) is None or self._files[logfile_path].closed:
                self._files[logfile_path] = await self._loop.run_in_executor(
                    None,
                    self._open_file,
                    logfile_path,
                )

        return logfile_path

    def _open_file(self, logfile_path: str):
        resolved_path = pathlib.Path(logfile_path).absolute().resolve()
        resolved_path.parent.mkdir(parents=True, exist_ok=True)

        return open(resolved_path, 'ab+')

    def _to_logfile_path(
        self,
        filename: str | None,
        directory: str | None = None,
    ):
        if filename is None:
            filename = "logs.json"

        if directory is None:
            directory = self._cwd or os.getcwd()

        return os.path.join(directory, filename)

    def _write_to_file(
        self,
        log: Log,
        logfile_path: str,
    ):
        logfile = self._files.get(logfile_path)
        if logfile is None or logfile.closed:
            return

        logfile.write(msgspec.json.encode(log) + b"\n")
        logfile.flush()

    def _write_line(self, stream: io.TextIOBase, line: str):
        stream.write(line)
        stream.flush()

    def _unwrap(self, entry_or_log: T | Log[T]) -> Entry:
        if isinstance(entry_or_log, Log):
            return entry_or_log.entry

        return entry_or_log

    def _as_log(self, entry_or_log: T | Log[T]) -> Log[T]:
        if isinstance(entry_or_log, Log):
            return entry_or_log

        # _as_log <- _log or _log_to_file <- log <- caller
        return Log.at_frame(entry_or_log, sys._getframe(3))

    async def close(self):
        if self._closed:
            return

        self._closed = True

        for stream_writer in self._stream_writers.values():
            if stream_writer is not None and stream_writer.is_closing() is False:
                stream_writer.close()

        for logfile_path in list(self._files):
            async with self._file_locks[logfile_path]:
                await self._loop.run_in_executor(
                    None,
                    self._close_file_at_path,
                    logfile_path,
                )

        for stream_type in self._duplicated:
            stream_file = self._stream_files[stream_type]
            if stream_file.closed is False:
                await self._loop.run_in_executor(
                    None,
                    stream_file.close,
                )

        self._stream_writers.clear()
        self._stream_files.clear()
        self._duplicated.clear()
        self._initialized = False

    def _close_file_at_path(self, logfile_path: str):
        logfile = self._files.pop(logfile_path, None)
        if logfile and logfile.closed is False:
            logfile.close()

