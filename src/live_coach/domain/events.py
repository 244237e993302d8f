import json
import re
from dataclasses import dataclass, field
from time import time

from live_coach.domain.errors import ProtocolFailure

AUTH_FAILURE_CLOSE_CODES = frozenset({4001, 4002, 4003})

_AUTH_ERROR_PATTERN = re.compile(r"not authori[sz]ed|unauthori[sz]ed|invalid (api key|token)|auth", re.IGNORECASE)


@dataclass(frozen=True)
class Word:
    text: str
    start: int
    end: int
    confidence: float = 0.0


@dataclass(frozen=True)
class TransportEvent:
    received_at: float = field(default_factory=time, compare=False)


@dataclass(frozen=True)
class SessionBegins(TransportEvent):
    session_id: str = ""
    expires_at: str | None = None


@dataclass(frozen=True)
class PartialTranscript(TransportEvent):
    text: str = ""
    audio_start: int = 0
    audio_end: int = 0
    confidence: float = 0.0


@dataclass(frozen=True)
class FinalTranscript(TransportEvent):
    text: str = ""
    audio_start: int = 0
    audio_end: int = 0
    confidence: float = 0.0
    words: tuple[Word, ...] = ()
    punctuated: bool = False


@dataclass(frozen=True)
class ServiceError(TransportEvent):
    code: int | None = None
    message: str = ""

    @property
    def is_auth_failure(self) -> bool:
        if self.code in AUTH_FAILURE_CLOSE_CODES:
            return True
        return bool(_AUTH_ERROR_PATTERN.search(self.message))


@dataclass(frozen=True)
class ConnectionClosed(TransportEvent):
    code: int = 1000
    reason: str = ""

    @property
    def is_normal(self) -> bool:
        return self.code == 1000


@dataclass(frozen=True)
class SessionTerminated(TransportEvent):
    pass


def parse_message(raw: str | bytes, received_at: float | None = None) -> TransportEvent:
    stamp = time() if received_at is None else received_at
    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise ProtocolFailure(f"Message is not JSON: {exc}", raw=raw) from exc

    if not isinstance(data, dict):
        raise ProtocolFailure("Message is not a JSON object", raw=raw)

    if "error" in data:
        code = data.get("code")
        return ServiceError(
            received_at=stamp,
            code=code if isinstance(code, int) else None,
            message=str(data["error"]),
        )

    message_type = data.get("message_type")
    try:
        if message_type == "SessionBegins":
            return SessionBegins(
                received_at=stamp,
                session_id=str(data["session_id"]),
                expires_at=data.get("expires_at"),
            )
        if message_type == "PartialTranscript":
            return PartialTranscript(
                received_at=stamp,
                text=str(data.get("text") or ""),
                audio_start=int(data["audio_start"]),
                audio_end=int(data["audio_end"]),
                confidence=float(data.get("confidence") or 0.0),
            )
        if message_type == "FinalTranscript":
            return FinalTranscript(
                received_at=stamp,
                text=str(data.get("text") or ""),
                audio_start=int(data["audio_start"]),
                audio_end=int(data["audio_end"]),
                confidence=float(data.get("confidence") or 0.0),
                words=tuple(_parse_word(w) for w in data.get("words") or ()),
                punctuated=bool(data.get("punctuated", False)),
            )
        if message_type == "SessionTerminated":
            return SessionTerminated(received_at=stamp)
    except (KeyError, TypeError, ValueError, OverflowError) as exc:
        raise ProtocolFailure(f"Malformed {message_type} message: {exc!r}", raw=raw) from exc

    raise ProtocolFailure(f"Unknown message_type: {message_type!r}", raw=raw)


def _parse_word(data: dict) -> Word:
    return Word(
        text=str(data["text"]),
        start=int(data["start"]),
        end=int(data["end"]),
        confidence=float(data.get("confidence") or 0.0),
    )
