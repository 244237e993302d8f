import logging

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidStatus, InvalidURI

from live_coach.domain.errors import AuthRejected, ProtocolFailure, TransientFailure
from live_coach.ports.transport import TransportClosed

logger = logging.getLogger(__name__)

ABNORMAL_CLOSURE = 1006


def _closed_from(exc: ConnectionClosed) -> TransportClosed:
    frame = exc.rcvd
    if frame is None:
        return TransportClosed(ABNORMAL_CLOSURE, "connection lost")
    return TransportClosed(frame.code, frame.reason)


class WebsocketsTransport:
    def __init__(self, open_timeout: float | None = None, max_size: int | None = 2**20) -> None:
        self._open_timeout = open_timeout
        self._max_size = max_size
        self._connection: ClientConnection | None = None

    @property
    def connected(self) -> bool:
        return self._connection is not None

    async def connect(self, url: str, headers: dict[str, str] | None = None) -> None:
        if self._connection is not None:
            await self.close()
        try:
            self._connection = await connect(
                url,
                additional_headers=headers,
                open_timeout=self._open_timeout,
                max_size=self._max_size,
            )
        except InvalidStatus as exc:
            status = exc.response.status_code
            body = exc.response.body.decode(errors="replace") if exc.response.body else ""
            if status in (401, 403):
                raise AuthRejected(f"Streaming endpoint rejected credential ({status})", code=status) from exc
            if status == 429 or status >= 500:
                raise TransientFailure(f"Streaming endpoint unavailable ({status})", status_code=status, body=body) from exc
            raise ProtocolFailure(f"Unexpected handshake response ({status})", raw=body, status_code=status) from exc
        except InvalidURI as exc:
            raise ProtocolFailure(f"Invalid streaming URL: {exc}") from exc
        except (InvalidHandshake, OSError, TimeoutError) as exc:
            raise TransientFailure(f"Could not connect to streaming endpoint: {exc}") from exc
        logger.debug("WebSocket connected")

    async def send(self, message: str | bytes) -> None:
        if self._connection is None:
            raise TransportClosed(ABNORMAL_CLOSURE, "not connected")
        try:
            await self._connection.send(message)
        except ConnectionClosed as exc:
            raise _closed_from(exc) from exc

    async def recv(self) -> str | bytes:
        if self._connection is None:
            raise TransportClosed(ABNORMAL_CLOSURE, "not connected")
        try:
            return await self._connection.recv()
        except ConnectionClosed as exc:
            raise _closed_from(exc) from exc

    async def close(self, code: int = 1000, reason: str = "") -> None:
        connection, self._connection = self._connection, None
        if connection is None:
            return
        await connection.close(code, reason)
        logger.debug("WebSocket closed (%d)", code)
