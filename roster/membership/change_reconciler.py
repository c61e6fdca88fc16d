from typing import Callable, Dict

import msgspec
from redis.exceptions import RedisError

from .errors import (
    ConsistencyAssertionError,
    MalformedRecordError,
    MembershipError,
)
from .logging_models import (
    MonitorDebug,
    MonitorError,
    MonitorInfo,
    MonitorWarning,
)
from .models import KeyEvent, MonitorConfig, ServerRecord
from .periodic_task import PeriodicTask
from .protocols import ApplicationProtocol, LoggerProtocol
from .retry import maybe_await
from .store import StoreClient


class ChangeReconciler:
    """
    Rebuilds the membership view from the store.

    Every path that changes the view (startup, the periodic timer, a
    keyspace notification) goes through ``sync``, which reads the whole
    index and replaces the application's view in one call. Notifications
    only decide *when* to resync, never *what* the view contains.

    Resyncs may overlap. Each one takes a generation number when it starts
    and only publishes if no later-started resync has published already.
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
        on_self_removed: Callable[[], None] | None = None,
    ) -> None:
        self._app = app
        self._store = store
        self._config = config
        self._logger = logger
        self._is_running = is_running
        self._server_id = server_id
        self._server_type = server_type
        self._on_self_removed = on_self_removed

        self._channel_header = f"__:{config.key_prefix}"
        self._generation = 0
        self._published_generation = 0
        self._timer = PeriodicTask(
            self.tick,
            config.period_seconds,
            on_error=self._on_tick_error,
        )

    @property
    def published_generation(self) -> int:
        return self._published_generation

    def start(self) -> None:
        self._timer.start()

    async def stop(self) -> None:
        await self._timer.stop()

    async def tick(self) -> None:
        await self.sync()

    async def _on_tick_error(self, err: Exception) -> None:
        await self._log(MonitorError, f"Resync tick failed - {err!r}")

    def parse_server_id(self, channel: str) -> str | None:
        position = channel.find(self._channel_header)
        if position < 0:
            return None

        server_id = channel[position + len(self._channel_header):]
        return server_id or None

    async def handle_change(self, pattern: str, channel: str, message: str) -> None:
        if not self._is_running():
            return

        server_id = self.parse_server_id(channel)
        if server_id is None:
            await self._log(
                MonitorDebug,
                f"Ignoring notification on unexpected channel {channel} ({message})",
            )
            return

        event = KeyEvent.parse(message)
        if event is None:
            await self._log(
                MonitorDebug,
                f"Unhandled notification on {channel} - {message}",
            )
            return

        if event == KeyEvent.EXPIRE:
            return

        if event.is_removal and server_id == self._server_id:
            await self._log(
                MonitorError,
                f"Own record received {event.value} while still alive - republishing in {self._config.self_heal_delay}s",
            )

            if self._on_self_removed:
                self._on_self_removed()

            return

        if event == KeyEvent.SET:
            await self._log(MonitorInfo, f"Server added or updated: {server_id}")

        elif event == KeyEvent.DEL:
            await self._log(MonitorInfo, f"Server removed: {server_id}")

        else:
            await self._log(MonitorInfo, f"Server expired: {server_id}")

        servers = await self.sync()
        if servers is None:
            return

        expected_present = event == KeyEvent.SET
        if (server_id in servers) != expected_present:
            await self._log(
                MonitorWarning,
                str(
                    ConsistencyAssertionError(
                        server_id,
                        event.value,
                        expected_present,
                    )
                ),
            )

    async def sync(self) -> Dict[str, ServerRecord] | None:
        """
        Read the store and publish the result as the new view.

        Returns the published mapping, or None if the read failed, the
        monitor stopped, or a newer resync already published.
        """
        if not self._is_running():
            return None

        self._generation += 1
        generation = self._generation

        try:
            servers = await self.get_servers_in_redis()

        except (MembershipError, RedisError) as err:
            await self._log(MonitorError, f"Resync failed - {err}")
            return None

        if not self._is_running():
            return None

        if generation < self._published_generation:
            await self._log(
                MonitorDebug,
                f"Discarding resync {generation}, resync {self._published_generation} already published",
            )
            return None

        self._published_generation = generation
        await maybe_await(self._app.replace_servers(servers))

        return servers

    async def get_servers_in_redis(self) -> Dict[str, ServerRecord]:
        """
        Read every indexed record. Ids whose record is missing or cannot be
        parsed are dropped from the result and evicted from the index.
        """
        server_ids = sorted(await self._store.smembers(self._config.index_key))
        if len(server_ids) < 1:
            await self._log(MonitorDebug, "Membership index is empty")
            return {}

        payloads = await self._store.mget(
            [self._config.record_key(server_id) for server_id in server_ids]
        )

        servers: Dict[str, ServerRecord] = {}
        stale: list[str] = []

        for server_id, payload in zip(server_ids, payloads):
            if payload is None:
                stale.append(server_id)
                continue

            try:
                record = ServerRecord.from_json(payload)

            except msgspec.DecodeError as err:
                await self._log(
                    MonitorWarning,
                    str(MalformedRecordError(server_id, payload, cause=err)),
                )
                stale.append(server_id)
                continue

            if record.id != server_id:
                await self._log(
                    MonitorWarning,
                    str(
                        MalformedRecordError(
                            server_id,
                            payload,
                        ).with_context(record_id=record.id)
                    ),
                )
                stale.append(server_id)
                continue

            servers[server_id] = record

        if stale:
            await self._evict(stale)

        return servers

    async def _evict(self, stale: list[str]) -> None:
        if not self._is_running():
            return

        try:
            await self._store.srem(self._config.index_key, *stale)
            await self._log(
                MonitorInfo,
                f"Evicted stale ids from index: {', '.join(stale)}",
            )

        except (MembershipError, RedisError) as err:
            await self._log(
                MonitorWarning,
                f"Failed to evict stale ids {', '.join(stale)} - {err}",
            )

    async def _log(self, model: type, message: str) -> None:
        await self._logger.log(
            model(
                message=message,
                server_id=self._server_id,
                server_type=self._server_type,
            )
        )
