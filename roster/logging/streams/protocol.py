import asyncio
from asyncio.streams import FlowControlMixin


class LoggerProtocol(FlowControlMixin, asyncio.Protocol):
    def __init__(self) -> None:
        super().__init__()
        self.transport: asyncio.WriteTransport | None = None

    def connection_made(self, transport: asyncio.WriteTransport) -> None:
        self.transport = transport
