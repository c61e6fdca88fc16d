import asyncio
from typing import Any, Awaitable, Callable

from redis.exceptions import RedisError, ResponseError

from roster.membership.errors import ConfigurationMismatchError
from roster.membership.logging_models import (
    MonitorDebug,
    MonitorError,
    MonitorInfo,
    MonitorWarning,
)
from roster.membership.models import MonitorConfig
from roster.membership.protocols import LoggerProtocol
from roster.membership.retry import RetryPolicy

from .connection import ConnectionFactory, create_subscriber_connection


NOTIFY_CONFIG_KEY = "notify-keyspace-events"
REQUIRED_FLAGS = "g$xeK"

# CONFIG GET reports the "A" alias in place of the event classes it covers.
ALL_EVENTS_ALIAS = "A"
ALL_EVENTS_FLAGS = "g$lshzxetd"


ChangeHandler = Callable[[str, str, str], Awaitable[None]]


def missing_notify_flags(flags: str | None) -> str:
    """Return the required flags absent from a notify-keyspace-events value."""
    if flags is None:
        flags = ""

    enabled = set(flags)
    if ALL_EVENTS_ALIAS in enabled:
        enabled.update(ALL_EVENTS_FLAGS)

    return "".join(flag for flag in REQUIRED_FLAGS if flag not in enabled)


class ChangeSubscriber:
    """
    Dedicated connection that pattern-subscribes to keyspace notifications.

    A connection in subscribe mode cannot issue other commands, so this
    never shares the StoreClient connection. After a connection loss the
    pubsub connection is thrown away and the whole ``connect`` handshake
    runs again; nothing is resubscribed implicitly.
    """

    def __init__(
        self,
        config: MonitorConfig,
        on_change: ChangeHandler,
        server_id: str,
        server_type: str,
        logger: LoggerProtocol,
        connection_factory: ConnectionFactory | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        if connection_factory is None:
            connection_factory = create_subscriber_connection

        if retry_policy is None:
            retry_policy = RetryPolicy(
                max_attempts=config.retry_attempts,
                base_delay=config.retry_base_delay,
                max_delay=config.retry_max_delay,
            )

        self._config = config
        self._on_change = on_change
        self._server_id = server_id
        self._server_type = server_type
        self._logger = logger
        self._connection_factory = connection_factory
        self._retry_policy = retry_policy

        self._connection = None
        self._pubsub = None
        self._running = False
        self._listen_task: asyncio.Task | None = None
        self._deliveries: set[asyncio.Task] = set()
        self._subscribed = asyncio.Event()

    @property
    def pattern(self) -> str:
        return self._config.subscribe_pattern

    @property
    def subscribed(self) -> bool:
        return self._subscribed.is_set()

    async def wait_subscribed(self, timeout: float | None = None) -> bool:
        try:
            await asyncio.wait_for(self._subscribed.wait(), timeout)
            return True

        except asyncio.TimeoutError:
            return False

    async def start(self) -> None:
        """Begin the connect handshake and listening in the background."""
        if self._running:
            return

        self._running = True
        self._listen_task = asyncio.create_task(self._run())

    async def connect(self) -> None:
        """
        Open the subscription connection, check the notification config
        and issue the pattern subscription.
        """
        self._connection = self._connection_factory(self._config)

        await self._ensure_notifications()

        self._pubsub = self._connection.pubsub(ignore_subscribe_messages=True)
        await self._pubsub.psubscribe(self.pattern)
        self._subscribed.set()

        await self._log(
            MonitorInfo,
            f"Subscribed to {self.pattern}",
        )

    async def _ensure_notifications(self) -> None:
        try:
            current = await self._connection.config_get(NOTIFY_CONFIG_KEY)

        except ResponseError as err:
            await self._log(
                MonitorError,
                str(ConfigurationMismatchError("unknown", REQUIRED_FLAGS, cause=err)),
            )
            return

        flags = (current or {}).get(NOTIFY_CONFIG_KEY) or ""
        missing = missing_notify_flags(flags)
        if not missing:
            return

        try:
            await self._connection.config_set(NOTIFY_CONFIG_KEY, flags + missing)
            await self._log(
                MonitorInfo,
                f"Enabled keyspace notifications - {NOTIFY_CONFIG_KEY} set to {flags + missing!r}",
            )

        except ResponseError as err:
            await self._log(
                MonitorError,
                str(ConfigurationMismatchError(flags, REQUIRED_FLAGS, cause=err)),
            )

    async def _run(self) -> None:
        attempt = 0

        while self._running:
            try:
                await self.connect()
                attempt = 0
                await self._listen()

            except asyncio.CancelledError:
                raise

            except (RedisError, OSError, asyncio.TimeoutError) as err:
                self._subscribed.clear()
                await self._discard_connection()

                if not self._running:
                    break

                attempt += 1
                delay = self._retry_policy.get_delay(attempt)

                if attempt >= self._retry_policy.max_attempts:
                    await self._log(
                        MonitorError,
                        f"Subscription unavailable after {attempt} attempts - {err} - relying on periodic resync, retrying in {delay:.2f}s",
                    )

                else:
                    await self._log(
                        MonitorWarning,
                        f"Subscription connection lost - {err} - reconnecting in {delay:.2f}s",
                    )

                await asyncio.sleep(delay)

    async def _listen(self) -> None:
        while self._running:
            message = await self._pubsub.get_message(
                ignore_subscribe_messages=True,
                timeout=self._config.listen_timeout,
            )

            if message is None or message.get("type") != "pmessage":
                continue

            self._deliver(
                message.get("pattern"),
                message.get("channel"),
                message.get("data"),
            )

    def _deliver(self, pattern: Any, channel: Any, data: Any) -> None:
        task = asyncio.create_task(
            self._handle(
                _as_text(pattern),
                _as_text(channel),
                _as_text(data),
            )
        )
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)

    async def _handle(self, pattern: str, channel: str, message: str) -> None:
        try:
            await self._on_change(pattern, channel, message)

        except Exception as err:
            await self._log(
                MonitorError,
                f"Change handler failed for {channel} ({message}) - {err}",
            )

    async def unsubscribe(self) -> None:
        """Stop listening and drop the pattern subscription."""
        self._running = False
        self._subscribed.clear()

        if self._listen_task:
            self._listen_task.cancel()
            try:
                await self._listen_task
            except asyncio.CancelledError:
                pass
            self._listen_task = None

        deliveries = list(self._deliveries)
        for task in deliveries:
            task.cancel()

        if deliveries:
            await asyncio.gather(*deliveries, return_exceptions=True)

        if self._pubsub is None:
            return

        try:
            await self._pubsub.punsubscribe(self.pattern)

        except (RedisError, OSError) as err:
            await self._log(
                MonitorDebug,
                f"Error unsubscribing from {self.pattern} - {err}",
            )

    async def close(self) -> None:
        if self._running:
            await self.unsubscribe()

        await self._discard_connection()

    async def _discard_connection(self) -> None:
        pubsub = self._pubsub
        connection = self._connection
        self._pubsub = None
        self._connection = None

        for resource in (pubsub, connection):
            if resource is None:
                continue

            try:
                await resource.aclose()

            except (RedisError, OSError) as err:
                await self._log(
                    MonitorDebug,
                    f"Error closing subscription connection - {err}",
                )

    async def _log(self, model: type, message: str) -> None:
        await self._logger.log(
            model(
                message=message,
                server_id=self._server_id,
                server_type=self._server_type,
            )
        )


def _as_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode(errors="replace")

    if value is None:
        return ""

    return str(value)
