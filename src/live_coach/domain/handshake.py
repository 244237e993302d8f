import json
import logging
from typing import Literal, Protocol
from urllib.parse import urlencode

from live_coach.ports.credentials import Credential
from live_coach.ports.transport import TransportPort

logger = logging.getLogger(__name__)

AuthMode = Literal["url-token", "auth-message"]


class HandshakeStrategy(Protocol):
    @property
    def explicit_auth(self) -> bool: ...

    async def perform_handshake(
        self,
        transport: TransportPort,
        endpoint: str,
        credential: Credential,
        sample_rate: int,
    ) -> None: ...


def _with_query(endpoint: str, params: dict[str, str | int]) -> str:
    separator = "&" if "?" in endpoint else "?"
    return f"{endpoint}{separator}{urlencode(params)}"


class UrlTokenHandshake:
    explicit_auth = False

    async def perform_handshake(
        self,
        transport: TransportPort,
        endpoint: str,
        credential: Credential,
        sample_rate: int,
    ) -> None:
        url = _with_query(endpoint, {"sample_rate": sample_rate, "token": credential.token})
        logger.debug("Connecting with token in URL to %s", endpoint)
        await transport.connect(url)


class AuthMessageHandshake:
    explicit_auth = True

    async def perform_handshake(
        self,
        transport: TransportPort,
        endpoint: str,
        credential: Credential,
        sample_rate: int,
    ) -> None:
        url = _with_query(endpoint, {"sample_rate": sample_rate})
        logger.debug("Connecting anonymously to %s", endpoint)
        await transport.connect(url)
        await transport.send(json.dumps({"authorization": credential.token}))


def create_handshake(mode: AuthMode) -> HandshakeStrategy:
    if mode == "auth-message":
        return AuthMessageHandshake()
    if mode == "url-token":
        return UrlTokenHandshake()
    raise ValueError(f"Unknown auth mode: {mode}")
