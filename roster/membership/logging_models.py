"""
Logging models for the membership monitor.

Each model carries the identity of the node doing the logging
(server_id, server_type) so entries from a fleet can be told apart.
"""

from roster.logging.models import Entry, LogLevel


class MonitorDebug(Entry, kw_only=True):
    server_id: str
    server_type: str
    level: LogLevel = LogLevel.DEBUG


class MonitorInfo(Entry, kw_only=True):
    server_id: str
    server_type: str
    level: LogLevel = LogLevel.INFO


class MonitorWarning(Entry, kw_only=True):
    server_id: str
    server_type: str
    level: LogLevel = LogLevel.WARN


class MonitorError(Entry, kw_only=True):
    server_id: str
    server_type: str
    level: LogLevel = LogLevel.ERROR
