from .membership import (
    MembershipMonitor as MembershipMonitor,
    MonitorConfig as MonitorConfig,
    ServerRecord as ServerRecord,
    ServerState as ServerState,
    create_monitor as create_monitor,
)
