import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from live_coach.domain.events import (
    ConnectionClosed,
    FinalTranscript,
    PartialTranscript,
    ServiceError,
    SessionBegins,
    TransportEvent,
    Word,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Segment:
    text: str
    audio_start: int
    audio_end: int
    confidence: float = 0.0
    words: tuple[Word, ...] = ()
    session_id: str | None = None
    low_confidence: bool = False

    @property
    def duration_seconds(self) -> float:
        return max(self.audio_end - self.audio_start, 0) / 1000.0


@dataclass(frozen=True)
class TerminalNotice:
    session_id: str | None
    code: int | None
    reason: str
    is_error: bool


@dataclass(frozen=True)
class TranscriptState:
    finalized: tuple[Segment, ...] = ()
    pending_partial: Segment | None = None
    last_event_timestamp: float | None = None


@dataclass
class TranscriptStats:
    partial_count: int = 0
    final_count: int = 0
    word_count: int = 0
    confidence_sum: float = 0.0
    confidence_samples: int = 0
    skipped_events: int = 0

    @property
    def average_confidence(self) -> float:
        if self.confidence_samples == 0:
            return 0.0
        return self.confidence_sum / self.confidence_samples


@dataclass
class _SessionCursor:
    session_id: str | None
    finalized_until: int = -1
    finalized_ranges: set[tuple[int, int]] = field(default_factory=set)
    terminated: bool = False


PartialCallback = Callable[[Segment], None]
SegmentCallback = Callable[[Segment], None]
TerminalCallback = Callable[[TerminalNotice], None]


class TranscriptAggregator:
    def __init__(
        self,
        on_partial: PartialCallback | None = None,
        on_segment_finalized: SegmentCallback | None = None,
        on_terminal: TerminalCallback | None = None,
    ) -> None:
        self._on_partial = on_partial
        self._on_segment_finalized = on_segment_finalized
        self._on_terminal = on_terminal

        self._finalized: list[Segment] = []
        self._pending: Segment | None = None
        self._last_event_timestamp: float | None = None
        self._cursor = _SessionCursor(session_id=None)
        self._stats = TranscriptStats()

    @property
    def finalized(self) -> tuple[Segment, ...]:
        return tuple(self._finalized)

    @property
    def finalized_texts(self) -> list[str]:
        return [segment.text for segment in self._finalized]

    @property
    def pending_partial(self) -> Segment | None:
        return self._pending

    @property
    def stats(self) -> TranscriptStats:
        return self._stats

    @property
    def current_transcript(self) -> str:
        parts = self.finalized_texts
        if self._pending is not None:
            parts.append(self._pending.text)
        return " ".join(part for part in parts if part)

    def snapshot(self) -> TranscriptState:
        return TranscriptState(
            finalized=tuple(self._finalized),
            pending_partial=self._pending,
            last_event_timestamp=self._last_event_timestamp,
        )

    def on_event(self, event: TransportEvent) -> None:
        self._last_event_timestamp = event.received_at

        if isinstance(event, SessionBegins):
            self._begin_session(event)
        elif isinstance(event, PartialTranscript):
            self._apply_partial(event)
        elif isinstance(event, FinalTranscript):
            self._apply_final(event)
        elif isinstance(event, ServiceError):
            self._terminate(code=event.code, reason=event.message, is_error=True)
        elif isinstance(event, ConnectionClosed):
            self._terminate(code=event.code, reason=event.reason, is_error=not event.is_normal)
        else:
            self._stats.skipped_events += 1
            logger.warning("Skipping unsupported event %r", event)

    def _begin_session(self, event: SessionBegins) -> None:
        if event.session_id == self._cursor.session_id and not self._cursor.terminated:
            return
        self._cursor = _SessionCursor(session_id=event.session_id)
        self._pending = None
        logger.debug("Aggregating session %s", event.session_id)

    def _apply_partial(self, event: PartialTranscript) -> None:
        if event.audio_end <= self._cursor.finalized_until:
            logger.debug("Ignoring stale partial ending at %dms", event.audio_end)
            return

        self._stats.partial_count += 1
        text = event.text.strip()
        if not text:
            self._pending = None
            return

        self._pending = Segment(
            text=text,
            audio_start=event.audio_start,
            audio_end=event.audio_end,
            confidence=event.confidence,
            session_id=self._cursor.session_id,
        )
        self._notify(self._on_partial, self._pending)

    def _apply_final(self, event: FinalTranscript) -> None:
        self._pending = None
        text = event.text.strip()
        if not text:
            return

        audio_range = (event.audio_start, event.audio_end)
        if audio_range in self._cursor.finalized_ranges:
            logger.debug("Ignoring duplicate final for %s", audio_range)
            return

        segment = Segment(
            text=text,
            audio_start=event.audio_start,
            audio_end=event.audio_end,
            confidence=event.confidence,
            words=event.words,
            session_id=self._cursor.session_id,
        )
        self._commit(segment)

    def _terminate(self, code: int | None, reason: str, is_error: bool) -> None:
        if self._cursor.terminated:
            return
        self._cursor.terminated = True

        if self._pending is not None:
            flushed = Segment(
                text=self._pending.text,
                audio_start=self._pending.audio_start,
                audio_end=self._pending.audio_end,
                confidence=self._pending.confidence,
                session_id=self._pending.session_id,
                low_confidence=True,
            )
            self._pending = None
            self._commit(flushed)

        notice = TerminalNotice(
            session_id=self._cursor.session_id,
            code=code,
            reason=reason,
            is_error=is_error,
        )
        self._notify(self._on_terminal, notice)

    def _commit(self, segment: Segment) -> None:
        self._finalized.append(segment)
        self._cursor.finalized_ranges.add((segment.audio_start, segment.audio_end))
        self._cursor.finalized_until = max(self._cursor.finalized_until, segment.audio_end)

        self._stats.final_count += 1
        self._stats.word_count += len(segment.text.split())
        if not segment.low_confidence:
            self._stats.confidence_sum += segment.confidence
            self._stats.confidence_samples += 1

        logger.info("Final: %s", segment.text)
        self._notify(self._on_segment_finalized, segment)

    @staticmethod
    def _notify(callback: Callable | None, payload: object) -> None:
        if callback is None:
            return
        try:
            callback(payload)
        except Exception:
            logger.exception("Transcript listener failed")
