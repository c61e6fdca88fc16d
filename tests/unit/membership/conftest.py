"""
Shared fixtures for membership tests.
"""

import pytest

from roster.membership.models import MonitorConfig

from tests.unit.membership.mocks import (
    FakeApplication,
    FakeStoreServer,
    RecordingLogger,
    make_record,
)


@pytest.fixture
def config() -> MonitorConfig:
    return MonitorConfig(
        period=60000,
        prefix="test_monitor:",
        set_key="test_monitor_servers",
        retry_attempts=3,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
        self_heal_delay=0.05,
        listen_timeout=0.05,
    )


@pytest.fixture
def fast_config() -> MonitorConfig:
    return MonitorConfig(
        period=50,
        prefix="test_monitor:",
        set_key="test_monitor_servers",
        retry_attempts=3,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
        self_heal_delay=0.05,
        listen_timeout=0.05,
    )


@pytest.fixture
def store_server() -> FakeStoreServer:
    return FakeStoreServer(notify_flags="KEA")


@pytest.fixture
def logger() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture
def app() -> FakeApplication:
    return FakeApplication(
        cur_server=make_record("connector-server-1"),
        settings={"__serverState__": "up"},
    )
