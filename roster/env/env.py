from __future__ import annotations

from typing import Callable, Dict, Literal, Union

from pydantic import BaseModel, StrictBool, StrictFloat, StrictInt, StrictStr

PrimaryType = Union[str, int, float, bytes, bool]


class Env(BaseModel):
    ROSTER_MONITOR_HOST: StrictStr = "localhost"
    ROSTER_MONITOR_PORT: StrictInt = 6379
    ROSTER_MONITOR_USERNAME: StrictStr | None = None
    ROSTER_MONITOR_PASSWORD: StrictStr | None = None
    ROSTER_MONITOR_DB: StrictInt = 0
    ROSTER_MONITOR_SECURE: StrictBool = False
    ROSTER_MONITOR_PERIOD: StrictInt = 10000
    ROSTER_MONITOR_EXPIRE: StrictInt | None = None
    ROSTER_MONITOR_PREFIX: StrictStr = "roster_monitor:"
    ROSTER_MONITOR_NAMESPACE: StrictStr | None = None
    ROSTER_MONITOR_SET_KEY: StrictStr = "roster_monitor_servers"
    ROSTER_MONITOR_STATE_KEY: StrictStr = "__serverState__"
    ROSTER_MONITOR_RETRY_ATTEMPTS: StrictInt = 5
    ROSTER_MONITOR_RETRY_BASE_DELAY: StrictFloat = 0.5
    ROSTER_MONITOR_RETRY_MAX_DELAY: StrictFloat = 5.0
    ROSTER_MONITOR_SELF_HEAL_DELAY: StrictFloat = 1.0
    ROSTER_LOG_LEVEL: StrictStr = "info"
    ROSTER_LOG_OUTPUT: Literal["stdout", "stderr"] = "stdout"

    @classmethod
    def types_map(cls) -> Dict[str, Callable[[str], PrimaryType]]:
        return {
            "ROSTER_MONITOR_HOST": str,
            "ROSTER_MONITOR_PORT": int,
            "ROSTER_MONITOR_USERNAME": str,
            "ROSTER_MONITOR_PASSWORD": str,
            "ROSTER_MONITOR_DB": int,
            "ROSTER_MONITOR_SECURE": lambda value: value.lower() in ("1", "true", "yes"),
            "ROSTER_MONITOR_PERIOD": int,
            "ROSTER_MONITOR_EXPIRE": int,
            "ROSTER_MONITOR_PREFIX": str,
            "ROSTER_MONITOR_NAMESPACE": str,
            "ROSTER_MONITOR_SET_KEY": str,
            "ROSTER_MONITOR_STATE_KEY": str,
            "ROSTER_MONITOR_RETRY_ATTEMPTS": int,
            "ROSTER_MONITOR_RETRY_BASE_DELAY": float,
            "ROSTER_MONITOR_RETRY_MAX_DELAY": float,
            "ROSTER_MONITOR_SELF_HEAL_DELAY": float,
            "ROSTER_LOG_LEVEL": str,
            "ROSTER_LOG_OUTPUT": str,
        }

    def get_monitor_config(self):
        """Build a MonitorConfig from the environment settings."""
        from roster.membership.models import MonitorConfig

        return MonitorConfig(
            host=self.ROSTER_MONITOR_HOST,
            port=self.ROSTER_MONITOR_PORT,
            username=self.ROSTER_MONITOR_USERNAME,
            password=self.ROSTER_MONITOR_PASSWORD,
            database=self.ROSTER_MONITOR_DB,
            secure=self.ROSTER_MONITOR_SECURE,
            period=self.ROSTER_MONITOR_PERIOD,
            expire=self.ROSTER_MONITOR_EXPIRE,
            prefix=self.ROSTER_MONITOR_PREFIX,
            namespace=self.ROSTER_MONITOR_NAMESPACE,
            set_key=self.ROSTER_MONITOR_SET_KEY,
            state_key=self.ROSTER_MONITOR_STATE_KEY,
            retry_attempts=self.ROSTER_MONITOR_RETRY_ATTEMPTS,
            retry_base_delay=self.ROSTER_MONITOR_RETRY_BASE_DELAY,
            retry_max_delay=self.ROSTER_MONITOR_RETRY_MAX_DELAY,
            self_heal_delay=self.ROSTER_MONITOR_SELF_HEAL_DELAY,
        )

    def get_logging_config(self) -> dict:
        """Get keyword arguments for LoggingConfig.update()."""
        return {
            'log_level': self.ROSTER_LOG_LEVEL,
            'log_output': self.ROSTER_LOG_OUTPUT,
        }
