"""
Lifecycle and end-to-end tests for MembershipMonitor against the
in-memory store: startup ordering, shutdown cleanup, convergence through
notifications and through the periodic resync alone.
"""

import asyncio

import pytest

from roster.membership import (
    MembershipMonitor,
    MonitorState,
    MonitorStateError,
    available_monitors,
    create_monitor,
    get_monitor,
    register_monitor,
)
from roster.membership import registry
from roster.membership.logging_models import MonitorError, MonitorInfo
from roster.membership.models import MonitorConfig

from tests.unit.membership.mocks import (
    FakeApplication,
    FakeStoreServer,
    RecordingLogger,
    make_record,
    wait_for_condition,
)


PREFIX = "test_monitor:"
INDEX_KEY = "test_monitor_servers"
RECORD_KEY = "test_monitor:connector-server-1"


def make_monitor(
    app: FakeApplication,
    config: MonitorConfig,
    store_server: FakeStoreServer,
    logger: RecordingLogger,
) -> MembershipMonitor:
    return MembershipMonitor(
        app,
        config,
        logger=logger,
        connection_factory=store_server.connection_factory,
    )


class TestMonitorStart:

    @pytest.mark.asyncio
    async def test_start_publishes_and_syncs_before_callback(
        self,
        app: FakeApplication,
        config: MonitorConfig,
        store_server: FakeStoreServer,
        logger: RecordingLogger,
    ) -> None:
        monitor = make_monitor(app, config, store_server, logger)
        seen: dict = {}

        def on_started() -> None:
            seen["record"] = RECORD_KEY in store_server.data
            seen["view"] = set(app.servers)
            seen["state"] = monitor.state

        await monitor.start(on_started)

        assert seen == {
            "record": True,
            "view": {"connector-server-1"},
            "state": MonitorState.RUNNING,
        }
        assert store_server.data[INDEX_KEY] == {"connector-server-1"}
        assert await monitor.subscriber.wait_subscribed(timeout=1.0)
        assert any("Membership monitor started" in message for message in logger.messages(MonitorInfo))

        await monitor.stop()

    @pytest.mark.asyncio
    async def test_async_callbacks_are_awaited(
        self,
        app: FakeApplication,
        config: MonitorConfig,
        store_server: FakeStoreServer,
        logger: RecordingLogger,
    ) -> None:
        monitor = make_monitor(app, config, store_server, logger)
        calls: list[str] = []

        async def on_started() -> None:
            calls.append("started")

        async def on_stopped() -> None:
            calls.append("stopped")

        await monitor.start(on_started)
        await monitor.stop(on_stopped)

        assert calls == ["started", "stopped"]

    @pytest.mark.asyncio
    async def test_second_start_is_rejected(
        self,
        app: FakeApplication,
        config: MonitorConfig,
        store_server: FakeStoreServer,
        logger: RecordingLogger,
    ) -> None:
        monitor = make_monitor(app, config, store_server, logger)
        await monitor.start()

        with pytest.raises(MonitorStateError):
            await monitor.start()

        assert monitor.state == MonitorState.RUNNING

        await monitor.stop()

    @pytest.mark.asyncio
    async def test_failed_start_returns_to_stopped(
        self,
        app: FakeApplication,
        config: MonitorConfig,
        logger: RecordingLogger,
    ) -> None:

        def refuse(config: MonitorConfig):
            raise ConnectionRefusedError("store unreachable")

        monitor = MembershipMonitor(
            app,
            config,
            logger=logger,
            connection_factory=refuse,
        )

        with pytest.raises(ConnectionRefusedError):
            await monitor.start()

        assert monitor.state == MonitorState.STOPPED
        assert monitor.is_running() is False

    @pytest.mark.asyncio
    async def test_missing_notification_config_still_starts(
        self,
        app: FakeApplication,
        config: MonitorConfig,
        logger: RecordingLogger,
    ) -> None:
        store_server = FakeStoreServer(notify_flags="", allow_config_set=False)
        monitor = make_monitor(app, config, store_server, logger)

        await monitor.start()

        assert monitor.state == MonitorState.RUNNING
        assert await monitor.subscriber.wait_subscribed(timeout=1.0)
        assert any("notify-keyspace-events" in message for message in logger.messages(MonitorError))

        await monitor.stop()


class TestMonitorStop:

    @pytest.mark.asyncio
    async def test_stop_removes_record_and_index_entry(
        self,
        app: FakeApplication,
        config: MonitorConfig,
        store_server: FakeStoreServer,
        logger: RecordingLogger,
    ) -> None:
        monitor = make_monitor(app, config, store_server, logger)
        await monitor.start()
        assert await monitor.subscriber.wait_subscribed(timeout=1.0)
        store_server.clear_commands()

        stopped: list[bool] = []
        await monitor.stop(lambda: stopped.append(True))

        names = store_server.command_names()
        assert names.index("PUNSUBSCRIBE") < names.index("DEL") < names.index("SREM")
        assert RECORD_KEY not in store_server.data
        assert "connector-server-1" not in store_server.data[INDEX_KEY]
        assert stopped == [True]
        assert monitor.state == MonitorState.STOPPED
        assert all(connection.closed for connection in store_server.connections)

    @pytest.mark.asyncio
    async def test_stop_during_start_waits_for_forced_write(
        self,
        app: FakeApplication,
        config: MonitorConfig,
        store_server: FakeStoreServer,
        logger: RecordingLogger,
    ) -> None:
        """A record written by an in-flight start must not outlive stop."""
        monitor = make_monitor(app, config, store_server, logger)
        gate = asyncio.Event()
        store_server.set_gates.append(gate)

        starting = asyncio.create_task(monitor.start())
        assert await wait_for_condition(lambda: store_server.count("SET") == 1)

        stopped: list[bool] = []
        stopping = asyncio.create_task(monitor.stop(lambda: stopped.append(True)))
        await asyncio.sleep(0.05)

        assert stopping.done() is False
        assert monitor.state == MonitorState.STOPPING

        gate.set()
        await starting
        await stopping

        assert RECORD_KEY not in store_server.data
        assert "connector-server-1" not in store_server.data[INDEX_KEY]
        assert stopped == [True]
        assert monitor.state == MonitorState.STOPPED
        assert store_server.subscribers == []
        assert all(connection.closed for connection in store_server.connections)

    @pytest.mark.asyncio
    async def test_second_stop_only_invokes_callback(
        self,
        app: FakeApplication,
        config: MonitorConfig,
        store_server: FakeStoreServer,
        logger: RecordingLogger,
    ) -> None:
        monitor = make_monitor(app, config, store_server, logger)
        await monitor.start()
        await monitor.stop()
        store_server.clear_commands()

        stopped: list[bool] = []
        await monitor.stop(lambda: stopped.append(True))

        assert stopped == [True]
        assert store_server.commands == []

    @pytest.mark.asyncio
    async def test_stop_before_start_is_a_no_op(
        self,
        app: FakeApplication,
        config: MonitorConfig,
        store_server: FakeStoreServer,
        logger: RecordingLogger,
    ) -> None:
        monitor = make_monitor(app, config, store_server, logger)

        await monitor.stop()

        assert monitor.state == MonitorState.STOPPED
        assert store_server.connections == []

    @pytest.mark.asyncio
    async def test_monitor_can_restart_after_stop(
        self,
        app: FakeApplication,
        config: MonitorConfig,
        store_server: FakeStoreServer,
        logger: RecordingLogger,
    ) -> None:
        monitor = make_monitor(app, config, store_server, logger)
        await monitor.start()
        await monitor.stop()

        await monitor.start()

        assert monitor.state == MonitorState.RUNNING
        assert RECORD_KEY in store_server.data

        await monitor.stop()


class TestMonitorConvergence:

    @pytest.mark.asyncio
    async def test_peers_see_each_other_through_notifications(
        self,
        app: FakeApplication,
        config: MonitorConfig,
        store_server: FakeStoreServer,
        logger: RecordingLogger,
    ) -> None:
        peer_app = FakeApplication(
            cur_server=make_record("area-server-1", "area", 3250),
            settings={"__serverState__": "up"},
        )
        monitor = make_monitor(app, config, store_server, logger)
        peer = make_monitor(peer_app, config, store_server, RecordingLogger())

        await monitor.start()
        assert await monitor.subscriber.wait_subscribed(timeout=1.0)
        await peer.start()

        assert await wait_for_condition(lambda: set(app.servers) == {"connector-server-1", "area-server-1"})
        assert set(peer_app.servers) == {"connector-server-1", "area-server-1"}

        await peer.stop()

        assert await wait_for_condition(lambda: set(app.servers) == {"connector-server-1"})

        await monitor.stop()

    @pytest.mark.asyncio
    async def test_expired_peer_is_removed(
        self,
        app: FakeApplication,
        config: MonitorConfig,
        store_server: FakeStoreServer,
        logger: RecordingLogger,
    ) -> None:
        monitor = make_monitor(app, config, store_server, logger)
        await monitor.start()
        assert await monitor.subscriber.wait_subscribed(timeout=1.0)

        store_server.put_record(make_record("area-server-1", "area"), PREFIX, INDEX_KEY)
        assert await wait_for_condition(lambda: "area-server-1" in app.servers)

        store_server.expire_key(f"{PREFIX}area-server-1")

        assert await wait_for_condition(lambda: "area-server-1" not in app.servers)
        assert await wait_for_condition(lambda: "area-server-1" not in store_server.data[INDEX_KEY])

        await monitor.stop()

    @pytest.mark.asyncio
    async def test_periodic_resync_converges_without_notifications(
        self,
        app: FakeApplication,
        fast_config: MonitorConfig,
        store_server: FakeStoreServer,
        logger: RecordingLogger,
    ) -> None:
        store_server.drop_notifications = True
        monitor = make_monitor(app, fast_config, store_server, logger)
        await monitor.start()

        store_server.put_record(make_record("area-server-1", "area"), PREFIX, INDEX_KEY)
        assert await wait_for_condition(lambda: "area-server-1" in app.servers)

        store_server.expire_key(f"{PREFIX}area-server-1")
        assert await wait_for_condition(lambda: "area-server-1" not in app.servers)

        await monitor.stop()

    @pytest.mark.asyncio
    async def test_own_record_expiry_is_republished(
        self,
        app: FakeApplication,
        config: MonitorConfig,
        store_server: FakeStoreServer,
        logger: RecordingLogger,
    ) -> None:
        monitor = make_monitor(app, config, store_server, logger)
        await monitor.start()
        assert await monitor.subscriber.wait_subscribed(timeout=1.0)
        replace_calls = len(app.replace_calls)

        store_server.expire_key(RECORD_KEY)

        assert await wait_for_condition(lambda: RECORD_KEY in store_server.data)
        assert "connector-server-1" in app.servers
        assert all("connector-server-1" in servers for servers in app.replace_calls[replace_calls:])
        assert any("Own record received expired" in message for message in logger.messages(MonitorError))

        await monitor.stop()

    @pytest.mark.asyncio
    async def test_state_change_reaches_peers(
        self,
        app: FakeApplication,
        fast_config: MonitorConfig,
        store_server: FakeStoreServer,
        logger: RecordingLogger,
    ) -> None:
        peer_app = FakeApplication(
            cur_server=make_record("area-server-1", "area", 3250),
            settings={"__serverState__": "up"},
        )
        monitor = make_monitor(app, fast_config, store_server, logger)
        peer = make_monitor(peer_app, fast_config, store_server, RecordingLogger())
        await monitor.start()
        await peer.start()

        peer_app.settings["__serverState__"] = "draining"

        assert await wait_for_condition(
            lambda: "area-server-1" in app.servers
            and app.servers["area-server-1"].state.value == "draining"
        )

        await peer.stop()
        await monitor.stop()


class TestMonitorRegistry:

    def test_default_monitor_is_registered(self) -> None:
        assert get_monitor(registry.DEFAULT_MONITOR) is MembershipMonitor
        assert registry.DEFAULT_MONITOR in available_monitors()

    def test_unknown_monitor_raises(self) -> None:
        with pytest.raises(KeyError):
            get_monitor("zookeepermonitor")

    def test_register_and_create(
        self,
        monkeypatch: pytest.MonkeyPatch,
        app: FakeApplication,
        config: MonitorConfig,
    ) -> None:

        class CustomMonitor(MembershipMonitor):
            pass

        monkeypatch.setattr(registry, "_monitors", dict(registry._monitors))
        register_monitor("custom", CustomMonitor)

        monitor = create_monitor("custom", app, config=config)

        assert isinstance(monitor, CustomMonitor)
        assert monitor.config is config
        assert "custom" in available_monitors()
