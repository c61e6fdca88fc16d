import asyncio
from enum import Enum
from typing import Callable

import msgspec
from redis.exceptions import RedisError

from .errors import MembershipError
from .logging_models import MonitorDebug, MonitorError
from .models import MonitorConfig, ServerRecord, ServerState
from .periodic_task import PeriodicTask
from .protocols import ApplicationProtocol, LoggerProtocol
from .store import StoreClient


class PublishOutcome(Enum):
    WRITTEN = "written"      # full record written, id added to the index
    REFRESHED = "refreshed"  # TTL refreshed only
    FAILED = "failed"        # store or application error, logged
    SKIPPED = "skipped"      # monitor no longer running


class HeartbeatPublisher:
    """
    Publishes this node's liveness record.

    The full record is written only when it is missing, when forced, or
    when the application's state differs from the stored state. Otherwise
    the TTL is refreshed, which does not emit a ``set`` notification to the
    rest of the cluster.
    """

    def __init__(
        self,
        app: ApplicationProtocol,
        store: StoreClient,
        config: MonitorConfig,
        logger: LoggerProtocol,
        is_running: Callable[[], bool],
        server_id: str,
        server_type: str,
    ) -> None:
        self._app = app
        self._store = store
        self._config = config
        self._logger = logger
        self._is_running = is_running
        self._server_id = server_id
        self._server_type = server_type
        self._timer = PeriodicTask(
            self.tick,
            config.period_seconds,
            on_error=self._on_tick_error,
        )
        self._republish_tasks: set[asyncio.Task] = set()

    def start(self) -> None:
        self._timer.start()

    async def stop(self) -> None:
        await self._timer.stop()

        pending = list(self._republish_tasks)
        for task in pending:
            task.cancel()

        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def tick(self) -> None:
        await self.publish(force=False)

    async def _on_tick_error(self, err: Exception) -> None:
        await self._logger.log(
            MonitorError(
                message=f"Heartbeat tick failed - {err!r}",
                server_id=self._server_id,
                server_type=self._server_type,
            )
        )

    def current_record(self) -> ServerRecord:
        server = self._app.get_cur_server()
        state = self._app.get(self._config.state_key)

        if state is None:
            return server

        return msgspec.structs.replace(server, state=ServerState(state))

    async def publish(self, force: bool = False) -> PublishOutcome:
        if not self._is_running():
            return PublishOutcome.SKIPPED

        server: ServerRecord | None = None

        try:
            server = self.current_record()
            key = self._config.record_key(server.id)
            expire = self._config.expire_seconds

            stored = await self._store.get(key)

            if force or stored is None or self._state_changed(stored, server.state):
                return await self._write(key, server, expire)

            if not self._is_running():
                return PublishOutcome.SKIPPED

            refreshed = await self._store.expire(key, expire)
            if not refreshed:
                # Expired between the read and the refresh.
                return await self._write(key, server, expire)

            # Keeps the id indexed even if a resync evicted it during a
            # brief gap in the record's lifetime.
            await self._store.sadd(self._config.index_key, server.id)

            await self._logger.log(
                MonitorDebug(
                    message=f"Refreshed TTL of {key} ({expire}s)",
                    server_id=server.id,
                    server_type=server.server_type,
                )
            )

            return PublishOutcome.REFRESHED

        except (MembershipError, RedisError, ValueError) as err:
            await self._logger.log(
                MonitorError(
                    message=f"Heartbeat publish failed - {err}",
                    server_id=server.id if server else "",
                    server_type=server.server_type if server else "",
                )
            )

            return PublishOutcome.FAILED

    async def _write(
        self,
        key: str,
        server: ServerRecord,
        expire: int,
    ) -> PublishOutcome:
        if not self._is_running():
            return PublishOutcome.SKIPPED

        await self._store.set(key, server.to_json(), expire)
        await self._store.sadd(self._config.index_key, server.id)

        await self._logger.log(
            MonitorDebug(
                message=f"Wrote record {key} with state {server.state.value} ({expire}s)",
                server_id=server.id,
                server_type=server.server_type,
            )
        )

        return PublishOutcome.WRITTEN

    def _state_changed(self, stored: str | bytes, state: ServerState) -> bool:
        try:
            return ServerRecord.from_json(stored).state != state

        except msgspec.DecodeError:
            return True

    def schedule_republish(self, delay: float) -> None:
        """Force a full write after ``delay`` seconds, unless stopped first."""
        task = asyncio.create_task(self._republish(delay))
        self._republish_tasks.add(task)
        task.add_done_callback(self._republish_tasks.discard)

    async def _republish(self, delay: float) -> None:
        await asyncio.sleep(delay)

        if self._is_running():
            await self.publish(force=True)
