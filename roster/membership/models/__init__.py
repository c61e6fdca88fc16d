from .key_event import KeyEvent as KeyEvent
from .monitor_config import MonitorConfig as MonitorConfig
from .monitor_state import MonitorState as MonitorState
from .server_record import (
    ServerRecord as ServerRecord,
    ServerState as ServerState,
)
