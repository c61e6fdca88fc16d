from .change_reconciler import ChangeReconciler as ChangeReconciler
from .errors import (
    ConfigurationMismatchError as ConfigurationMismatchError,
    ConsistencyAssertionError as ConsistencyAssertionError,
    ErrorCategory as ErrorCategory,
    ErrorSeverity as ErrorSeverity,
    MalformedRecordError as MalformedRecordError,
    MembershipError as MembershipError,
    MonitorStateError as MonitorStateError,
    TransientStoreError as TransientStoreError,
)
from .heartbeat_publisher import (
    HeartbeatPublisher as HeartbeatPublisher,
    PublishOutcome as PublishOutcome,
)
from .membership_monitor import MembershipMonitor as MembershipMonitor
from .models import (
    KeyEvent as KeyEvent,
    MonitorConfig as MonitorConfig,
    MonitorState as MonitorState,
    ServerRecord as ServerRecord,
    ServerState as ServerState,
)
from .registry import (
    available_monitors as available_monitors,
    create_monitor as create_monitor,
    get_monitor as get_monitor,
    register_monitor as register_monitor,
)
