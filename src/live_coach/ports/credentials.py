import time
from dataclasses import dataclass, field
from typing import Protocol


@dataclass(frozen=True)
class Credential:
    token: str
    ttl_seconds: int
    issued_at: float = field(default_factory=time.time)

    @property
    def expires_at(self) -> float:
        return self.issued_at + self.ttl_seconds

    def seconds_remaining(self, now: float | None = None) -> float:
        current = time.time() if now is None else now
        return self.expires_at - current

    def is_expired(self, now: float | None = None) -> bool:
        return self.seconds_remaining(now) <= 0


class CredentialBrokerPort(Protocol):
    async def fetch_token(self, api_key: str, ttl_seconds: int) -> Credential: ...
