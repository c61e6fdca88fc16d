import math

from pydantic import (
    BaseModel,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    model_validator,
)


class MonitorConfig(BaseModel):
    host: StrictStr = "localhost"
    port: StrictInt = 6379
    username: StrictStr | None = None
    password: StrictStr | None = None
    database: StrictInt = 0
    secure: StrictBool = False
    period: StrictInt = Field(default=10000, gt=0)
    expire: StrictInt | None = Field(default=None, gt=0)
    prefix: StrictStr = "roster_monitor:"
    namespace: StrictStr | None = None
    set_key: StrictStr = "roster_monitor_servers"
    state_key: StrictStr = "__serverState__"
    retry_attempts: StrictInt = Field(default=5, ge=1)
    retry_base_delay: StrictFloat = 0.5
    retry_max_delay: StrictFloat = 5.0
    self_heal_delay: StrictFloat = 1.0
    listen_timeout: StrictFloat = 1.0

    @model_validator(mode="after")
    def check_index_key(self):
        if self.index_key.startswith(self.key_prefix):
            raise ValueError(
                f"set_key {self.index_key!r} must not begin with the record prefix {self.key_prefix!r}"
            )

        return self

    @property
    def key_prefix(self) -> str:
        if self.namespace:
            return f"{self.prefix}{self.namespace}:"

        return self.prefix

    @property
    def index_key(self) -> str:
        if self.namespace:
            return f"{self.set_key}:{self.namespace}"

        return self.set_key

    @property
    def period_seconds(self) -> float:
        return self.period / 1000

    @property
    def expire_seconds(self) -> int:
        if self.expire is not None:
            return self.expire

        return math.ceil((2 * self.period + 1000) / 1000)

    @property
    def subscribe_pattern(self) -> str:
        return f"__keyspace@{self.database}__:{self.key_prefix}*"

    @property
    def url(self) -> str:
        base = "rediss" if self.secure else "redis"
        return f"{base}://{self.host}:{self.port}"

    def record_key(self, server_id: str) -> str:
        return f"{self.key_prefix}{server_id}"
