"""
Registry of membership monitor implementations, keyed by name.

Hosting applications pick a monitor by name from configuration:

    monitor = create_monitor("redissubscribemonitor", app, config=config)
"""

from typing import Any, Dict

from .membership_monitor import MembershipMonitor


DEFAULT_MONITOR = "redissubscribemonitor"

_monitors: Dict[str, type] = {
    DEFAULT_MONITOR: MembershipMonitor,
}


def register_monitor(name: str, monitor_type: type) -> None:
    _monitors[name] = monitor_type


def get_monitor(name: str) -> type:
    monitor_type = _monitors.get(name)
    if monitor_type is None:
        raise KeyError(
            f"Unknown monitor {name!r}, registered: {', '.join(sorted(_monitors))}"
        )

    return monitor_type


def available_monitors() -> list[str]:
    return sorted(_monitors)


def create_monitor(name: str, app: Any, **kwargs: Any):
    return get_monitor(name)(app, **kwargs)
