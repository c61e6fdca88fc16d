"""
Membership monitor over a shared Redis store.

Every node publishes its own record under ``<prefix><server_id>`` with a
TTL and adds its id to an index set. Each node subscribes to keyspace
notifications for the prefix and, whenever a record is set, deleted or
expires, rebuilds its whole view of the cluster from the store. A full
resync also runs every period, so the view converges even when
notifications are lost.

Usage:
    monitor = MembershipMonitor(app, MonitorConfig(host="redis.local"))
    await monitor.start()
    ...
    await monitor.stop()

``start`` returns once the forced heartbeat and forced resync have run and
the subscription has been requested. The subscription handshake completes
in the background, so a started monitor is accepting, not necessarily
converged.
"""

import asyncio
from typing import Any, Awaitable, Callable

from redis.exceptions import RedisError

from roster.logging import Logger

from .change_reconciler import ChangeReconciler
from .errors import MembershipError, MonitorStateError
from .heartbeat_publisher import HeartbeatPublisher
from .logging_models import MonitorError, MonitorInfo
from .models import MonitorConfig, MonitorState
from .protocols import ApplicationProtocol, LoggerProtocol
from .retry import maybe_await
from .store import ChangeSubscriber, ConnectionFactory, StoreClient


Callback = Callable[[], Awaitable[Any] | Any]


class MembershipMonitor:
    def __init__(
        self,
        app: ApplicationProtocol,
        config: MonitorConfig | None = None,
        logger: LoggerProtocol | None = None,
        connection_factory: ConnectionFactory | None = None,
    ) -> None:
        if config is None:
            config = MonitorConfig()

        if logger is None:
            logger = Logger()

        self._app = app
        self._config = config
        self._logger = logger
        self._connection_factory = connection_factory
        self._state = MonitorState.STOPPED
        self._start_complete: asyncio.Event | None = None

        self._server_id: str | None = None
        self._server_type: str | None = None
        self._store: StoreClient | None = None
        self._subscriber: ChangeSubscriber | None = None
        self._publisher: HeartbeatPublisher | None = None
        self._reconciler: ChangeReconciler | None = None

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def config(self) -> MonitorConfig:
        return self._config

    @property
    def store(self) -> StoreClient | None:
        return self._store

    @property
    def subscriber(self) -> ChangeSubscriber | None:
        return self._subscriber

    @property
    def publisher(self) -> HeartbeatPublisher | None:
        return self._publisher

    @property
    def reconciler(self) -> ChangeReconciler | None:
        return self._reconciler

    def is_running(self) -> bool:
        return self._state in (MonitorState.STARTING, MonitorState.RUNNING)

    async def start(self, on_started: Callback | None = None) -> None:
        if self._state != MonitorState.STOPPED:
            raise MonitorStateError("start", self._state.value)

        self._state = MonitorState.STARTING
        self._start_complete = asyncio.Event()

        try:
            self._wire()

            await self._store.connect()

            self._publisher.start()
            self._reconciler.start()

            await self._publisher.publish(force=True)
            await self._reconciler.sync()

            if self._state != MonitorState.STARTING:
                # stop() was called while the forced writes were in flight.
                return

            await self._subscriber.start()

        except Exception:
            await self._teardown()
            self._state = MonitorState.STOPPED
            raise

        finally:
            self._start_complete.set()

        self._state = MonitorState.RUNNING

        await self._log(
            MonitorInfo,
            f"Membership monitor started - prefix {self._config.key_prefix}, period {self._config.period}ms, expire {self._config.expire_seconds}s",
        )

        if on_started:
            await maybe_await(on_started())

    async def stop(self, on_stopped: Callback | None = None) -> None:
        if self._state in (MonitorState.STOPPED, MonitorState.STOPPING):
            if on_stopped:
                await maybe_await(on_stopped())
            return

        self._state = MonitorState.STOPPING

        if self._start_complete and not self._start_complete.is_set():
            # The forced write from start must land before the record is removed.
            await self._start_complete.wait()

            if self._state == MonitorState.STOPPED:
                # start failed and already tore everything down.
                if on_stopped:
                    await maybe_await(on_stopped())
                return

        await self._publisher.stop()
        await self._reconciler.stop()
        await self._subscriber.unsubscribe()

        # Must run before the connections close or the commands are lost.
        try:
            await self._store.delete(self._config.record_key(self._server_id))
            await self._store.srem(self._config.index_key, self._server_id)

        except (MembershipError, RedisError) as err:
            await self._log(
                MonitorError,
                f"Failed to remove own record on shutdown - {err}",
            )

        await self._teardown()
        self._state = MonitorState.STOPPED

        await self._log(MonitorInfo, "Membership monitor stopped")

        if on_stopped:
            await maybe_await(on_stopped())

    def _wire(self) -> None:
        server = self._app.get_cur_server()
        self._server_id = server.id
        self._server_type = server.server_type

        self._store = StoreClient(
            self._config,
            server.id,
            server.server_type,
            self._logger,
            connection_factory=self._connection_factory,
        )

        self._publisher = HeartbeatPublisher(
            self._app,
            self._store,
            self._config,
            self._logger,
            self.is_running,
            server.id,
            server.server_type,
        )

        self._reconciler = ChangeReconciler(
            self._app,
            self._store,
            self._config,
            self._logger,
            self.is_running,
            server.id,
            server.server_type,
            on_self_removed=self._on_self_removed,
        )

        self._subscriber = ChangeSubscriber(
            self._config,
            self._reconciler.handle_change,
            server.id,
            server.server_type,
            self._logger,
            connection_factory=self._connection_factory,
        )

    def _on_self_removed(self) -> None:
        if self.is_running():
            self._publisher.schedule_republish(self._config.self_heal_delay)

    async def _teardown(self) -> None:
        if self._publisher:
            await self._publisher.stop()

        if self._reconciler:
            await self._reconciler.stop()

        if self._subscriber:
            await self._subscriber.close()

        if self._store:
            await self._store.close()

    async def _log(self, model: type, message: str) -> None:
        await self._logger.log(
            model(
                message=message,
                server_id=self._server_id or "",
                server_type=self._server_type or "",
            )
        )
