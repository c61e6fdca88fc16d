from typing import Callable

import redis.asyncio as aioredis
from redis.asyncio.retry import Retry
from redis.backoff import NoBackoff

from roster.membership.models import MonitorConfig


ConnectionFactory = Callable[[MonitorConfig], aioredis.Redis]


def create_connection(config: MonitorConfig) -> aioredis.Redis:
    """
    Open a lazy connection to the store.

    Responses are decoded to ``str`` so channel names and payloads can be
    compared directly. No network traffic happens until the first command.
    """
    return aioredis.from_url(
        config.url,
        username=config.username,
        password=config.password,
        db=config.database,
        decode_responses=True,
    )


def create_subscriber_connection(config: MonitorConfig) -> aioredis.Redis:
    """
    Open a connection for keyspace subscriptions with client-side retries
    disabled.

    redis-py reconnects a dropped pubsub connection on its own and replays
    its subscriptions from the connect callback. That would skip the
    notification config check, so every connection error is raised to the
    subscriber instead, which reruns its full handshake on a new connection.
    """
    return aioredis.from_url(
        config.url,
        username=config.username,
        password=config.password,
        db=config.database,
        decode_responses=True,
        retry=Retry(NoBackoff(), 0, supported_errors=()),
        retry_on_error=[],
    )
