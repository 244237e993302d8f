import asyncio
import json
import time

import numpy as np
import pytest

from live_coach.domain.aggregator import Segment, TerminalNotice
from live_coach.domain.errors import TranscriptionError
from live_coach.domain.session import TERMINATE_MESSAGE
from live_coach.ports.audio import AudioFrame, FrameSink
from live_coach.ports.credentials import Credential
from live_coach.ports.transcript import PipelineStatus, TranscriptListener
from live_coach.ports.transport import TransportClosed


SAMPLE_RATE = 16000
BLOCK_SIZE = 2048


def generate_sine_block(
    frequency: float = 440.0,
    amplitude: float = 0.5,
    block_size: int = BLOCK_SIZE,
    sample_rate: int = SAMPLE_RATE,
) -> np.ndarray:
    t = np.arange(block_size) / sample_rate
    return (np.sin(2 * np.pi * frequency * t) * amplitude).astype(np.float32)


def generate_silence_block(block_size: int = BLOCK_SIZE) -> np.ndarray:
    return np.zeros(block_size, dtype=np.float32)


def make_frame(sequence: int) -> AudioFrame:
    pcm = sequence.to_bytes(4, "little", signed=False)
    return AudioFrame(sequence=sequence, pcm=pcm, payload=pcm)


def make_credential(token: str = "abc123", ttl_seconds: int = 300, age: float = 0.0) -> Credential:
    return Credential(token=token, ttl_seconds=ttl_seconds, issued_at=time.time() - age)


def session_begins(session_id: str = "s1") -> dict:
    return {"message_type": "SessionBegins", "session_id": session_id, "expires_at": "2026-01-01T00:05:00"}


def partial(text: str, audio_start: int = 0, audio_end: int = 500, confidence: float = 0.9) -> dict:
    return {
        "message_type": "PartialTranscript",
        "text": text,
        "audio_start": audio_start,
        "audio_end": audio_end,
        "confidence": confidence,
    }


def final(text: str, audio_start: int = 0, audio_end: int = 500, confidence: float = 0.9) -> dict:
    return {
        "message_type": "FinalTranscript",
        "text": text,
        "audio_start": audio_start,
        "audio_end": audio_end,
        "confidence": confidence,
        "words": [],
        "punctuated": True,
    }


async def wait_until(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("Condition not met in time")
        await asyncio.sleep(0.005)


class FakeTransport:
    """In-memory duplex channel that plays the realtime service."""

    def __init__(
        self,
        begin_on_connect: bool = True,
        session_id: str = "s1",
        auto_terminate: bool = True,
    ) -> None:
        self.begin_on_connect = begin_on_connect
        self.session_id = session_id
        self.auto_terminate = auto_terminate
        self.connect_error: Exception | None = None
        self.connected_urls: list[str] = []
        self.sent: list[str | bytes] = []
        self.close_calls: list[int] = []
        self._inbound: asyncio.Queue = asyncio.Queue()
        self._closed = True

    @property
    def sent_audio(self) -> list[bytes]:
        return [m for m in self.sent if isinstance(m, bytes)]

    @property
    def sent_text(self) -> list[str]:
        return [m for m in self.sent if isinstance(m, str)]

    @property
    def is_closed(self) -> bool:
        return self._closed

    def push(self, message: dict | str) -> None:
        self._inbound.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def push_close(self, code: int, reason: str = "") -> None:
        self._inbound.put_nowait(TransportClosed(code, reason))

    def push_error(self, error: Exception) -> None:
        self._inbound.put_nowait(error)

    async def connect(self, url: str, headers: dict[str, str] | None = None) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.connected_urls.append(url)
        self._inbound = asyncio.Queue()
        self._closed = False
        if self.begin_on_connect:
            attempt = len(self.connected_urls)
            self.push(session_begins(self.session_id if attempt == 1 else f"{self.session_id}-{attempt}"))

    async def send(self, message: str | bytes) -> None:
        if self._closed:
            raise TransportClosed(1006, "not connected")
        self.sent.append(message)
        if self.auto_terminate and message == TERMINATE_MESSAGE:
            self.push({"message_type": "SessionTerminated"})
            self.push_close(1000, "")

    async def recv(self) -> str | bytes:
        item = await self._inbound.get()
        if isinstance(item, TransportClosed):
            self._closed = True
            self._inbound.put_nowait(item)
            raise item
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_calls.append(code)
        if not self._closed:
            self._closed = True
            self._inbound.put_nowait(TransportClosed(code, reason))


class FakeBroker:
    def __init__(self, outcomes: list[str | Credential | Exception] | None = None, ttl_seconds: int = 300) -> None:
        self._outcomes = list(outcomes or [])
        self._ttl_seconds = ttl_seconds
        self.calls: list[tuple[str, int]] = []

    async def fetch_token(self, api_key: str, ttl_seconds: int) -> Credential:
        self.calls.append((api_key, ttl_seconds))
        outcome = self._outcomes.pop(0) if self._outcomes else f"token-{len(self.calls)}"
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, Credential):
            return outcome
        return Credential(token=outcome, ttl_seconds=ttl_seconds)


class FakeCapture:
    def __init__(self, start_error: TranscriptionError | None = None) -> None:
        self._start_error = start_error
        self._sink: FrameSink | None = None
        self._sequence = 0
        self.start_calls = 0
        self.stop_calls = 0

    @property
    def sample_rate(self) -> int:
        return SAMPLE_RATE

    @property
    def block_size(self) -> int:
        return BLOCK_SIZE

    @property
    def running(self) -> bool:
        return self._sink is not None

    async def start(self, sink: FrameSink) -> None:
        self.start_calls += 1
        if self._start_error is not None:
            raise self._start_error
        self._sink = sink

    async def stop(self) -> None:
        self.stop_calls += 1
        self._sink = None

    def emit(self, count: int = 1) -> None:
        for _ in range(count):
            if self._sink is None:
                return
            self._sink(make_frame(self._sequence))
            self._sequence += 1


class RecordingListener(TranscriptListener):
    def __init__(self) -> None:
        self.statuses: list[tuple[PipelineStatus, str]] = []
        self.partials: list[Segment] = []
        self.segments: list[Segment] = []
        self.feedback: list[list[str]] = []
        self.terminals: list[TerminalNotice] = []

    @property
    def status_names(self) -> list[PipelineStatus]:
        return [status for status, _ in self.statuses]

    def on_status(self, status: PipelineStatus, detail: str) -> None:
        self.statuses.append((status, detail))

    def on_partial(self, segment: Segment) -> None:
        self.partials.append(segment)

    def on_segment(self, segment: Segment) -> None:
        self.segments.append(segment)

    def on_feedback(self, cues: list[str]) -> None:
        self.feedback.append(cues)

    def on_terminal(self, notice: TerminalNotice) -> None:
        self.terminals.append(notice)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def credential() -> Credential:
    return make_credential()


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()
