from .change_subscriber import (
    ChangeSubscriber as ChangeSubscriber,
    missing_notify_flags as missing_notify_flags,
)
from .connection import (
    ConnectionFactory as ConnectionFactory,
    create_connection as create_connection,
    create_subscriber_connection as create_subscriber_connection,
)
from .store_client import StoreClient as StoreClient
