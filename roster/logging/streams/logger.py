from __future__ import annotations

import asyncio
import pathlib
import sys
from typing import (
    Callable,
    Dict,
    TypeVar,
)

from roster.logging.models import Entry, Log

from .logger_context import LoggerContext

T = TypeVar('T', bound=Entry)


def _split_path(path: str | None):
    if path is None:
        return None, None

    logfile_path = pathlib.Path(path)
    is_logfile = len(logfile_path.suffix) > 0

    filename = logfile_path.name if is_logfile else None
    directory = str(logfile_path.parent.absolute()) if is_logfile else str(logfile_path.absolute())

    return filename, directory


class Logger:
    def __init__(self) -> None:
        self._contexts: Dict[str, LoggerContext] = {}

    def __getitem__(self, name: str):

        if self._contexts.get(name) is None:
            self._contexts[name] = LoggerContext(name=name)

        return self._contexts[name]

    def configure(
        self,
        name: str | None = None,
        template: str | None = None,
        path: str | None = None,
    ):
        if name is None:
            name = 'default'

        filename, directory = _split_path(path)

        self._contexts[name] = LoggerContext(
            name=name,
            template=template,
            filename=filename,
            directory=directory,
        )

    def context(
        self,
        name: str | None = None,
        template: str | None = None,
        path: str | None = None,
        nested: bool = False,
    ):
        if name is None:
            name = 'default'

        filename, directory = _split_path(path)

        if self._contexts.get(name) is None:

            self._contexts[name] = LoggerContext(
                name=name,
                template=template,
                filename=filename,
                directory=directory,
                nested=nested,
            )

        else:
            self._contexts[name].template = template if template else self._contexts[name].template
            self._contexts[name].filename = filename if filename else self._contexts[name].filename
            self._contexts[name].directory = directory if directory else self._contexts[name].directory
            self._contexts[name].nested = nested

        return self._contexts[name]

    async def log(
        self,
        entry: T,
        name: str | None = None,
        template: str | None = None,
        path: str | None = None,
        filter: Callable[[T], bool] | None = None,
    ):
        if name is None:
            name = 'default'

        log = Log.at_frame(entry, sys._getframe(1))

        async with self.context(
            name=name,
            nested=True,
        ) as ctx:
            await ctx.log(
                log,
                template=template,
                path=path,
                filter=filter,
            )

    async def close(self):

        if len(self._contexts) > 0:
            await asyncio.gather(*[
                context.stream.close() for context in self._contexts.values()
            ])

