from __future__ import annotations

from typing import Any, Awaitable, Callable, Iterable, TypeVar

from redis.exceptions import RedisError

from roster.membership.errors import (
    MonitorStateError,
    TransientStoreError,
)
from roster.membership.logging_models import MonitorDebug, MonitorWarning
from roster.membership.models import MonitorConfig
from roster.membership.protocols import LoggerProtocol
from roster.membership.retry import (
    RetryDecision,
    RetryPolicy,
    retry_with_backoff,
)

from .connection import ConnectionFactory, create_connection


T = TypeVar("T")


class StoreClient:
    """
    Command connection to the store.

    Every command is retried with capped backoff on connection errors and
    timeouts. When the retry budget for a command is spent the failure is
    raised as TransientStoreError. Errors the store answers with (bad
    arguments, wrong key type) are not retried and propagate unchanged.
    """

    def __init__(
        self,
        config: MonitorConfig,
        server_id: str,
        server_type: str,
        logger: LoggerProtocol,
        connection_factory: ConnectionFactory | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        if connection_factory is None:
            connection_factory = create_connection

        if retry_policy is None:
            retry_policy = RetryPolicy(
                max_attempts=config.retry_attempts,
                base_delay=config.retry_base_delay,
                max_delay=config.retry_max_delay,
            )

        self._config = config
        self._server_id = server_id
        self._server_type = server_type
        self._logger = logger
        self._connection_factory = connection_factory
        self._retry_policy = retry_policy
        self._connection = None

    @property
    def connected(self) -> bool:
        return self._connection is not None

    async def connect(self) -> None:
        if self._connection is None:
            self._connection = self._connection_factory(self._config)

    async def close(self) -> None:
        connection = self._connection
        self._connection = None

        if connection is None:
            return

        try:
            await connection.aclose()

        except (RedisError, OSError) as err:
            await self._logger.log(
                MonitorDebug(
                    message=f"Error closing store connection - {err}",
                    server_id=self._server_id,
                    server_type=self._server_type,
                )
            )

    async def get(self, key: str) -> str | None:
        return await self._execute(
            "GET",
            lambda connection: connection.get(key),
        )

    async def set(self, key: str, value: str | bytes, expire: int) -> Any:
        return await self._execute(
            "SET",
            lambda connection: connection.set(key, value, ex=expire),
        )

    async def expire(self, key: str, expire: int) -> bool:
        return bool(
            await self._execute(
                "EXPIRE",
                lambda connection: connection.expire(key, expire),
            )
        )

    async def sadd(self, key: str, *members: str) -> int:
        return await self._execute(
            "SADD",
            lambda connection: connection.sadd(key, *members),
        )

    async def srem(self, key: str, *members: str) -> int:
        return await self._execute(
            "SREM",
            lambda connection: connection.srem(key, *members),
        )

    async def smembers(self, key: str) -> set[str]:
        members = await self._execute(
            "SMEMBERS",
            lambda connection: connection.smembers(key),
        )
        return set(members or ())

    async def mget(self, keys: Iterable[str]) -> list[str | None]:
        keys = list(keys)
        if len(keys) < 1:
            return []

        return list(
            await self._execute(
                "MGET",
                lambda connection: connection.mget(keys),
            )
        )

    async def delete(self, *keys: str) -> int:
        return await self._execute(
            "DEL",
            lambda connection: connection.delete(*keys),
        )

    async def _execute(
        self,
        command: str,
        fn: Callable[[Any], Awaitable[T]],
    ) -> T:
        if self._connection is None:
            raise MonitorStateError(f"run {command}", "disconnected")

        attempts = 0

        async def run_command():
            nonlocal attempts
            attempts += 1

            if self._connection is None:
                raise MonitorStateError(f"run {command}", "disconnected")

            return await fn(self._connection)

        async def on_retry(attempt: int, error: Exception, delay: float):
            await self._logger.log(
                MonitorWarning(
                    message=f"Store command {command} failed (attempt {attempt}) - {error} - retrying in {delay:.2f}s",
                    server_id=self._server_id,
                    server_type=self._server_type,
                )
            )

        try:
            return await retry_with_backoff(
                run_command,
                policy=self._retry_policy,
                on_retry=on_retry,
            )

        except Exception as err:
            if self._retry_policy.should_retry(err) == RetryDecision.RETRY:
                raise TransientStoreError(
                    command,
                    attempts,
                    cause=err,
                ) from err

            raise
