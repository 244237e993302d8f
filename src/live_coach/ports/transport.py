from typing import Protocol


class TransportClosed(Exception):
    def __init__(self, code: int, reason: str = "") -> None:
        super().__init__(f"Transport closed ({code}): {reason}")
        self.code = code
        self.reason = reason


class TransportPort(Protocol):
    async def connect(self, url: str, headers: dict[str, str] | None = None) -> None: ...
    async def send(self, message: str | bytes) -> None: ...
    async def recv(self) -> str | bytes: ...
    async def close(self, code: int = 1000, reason: str = "") -> None: ...
