import asyncio
import json
import logging
import time
from collections.abc import Callable

from live_coach.domain.errors import (
    AbnormalClose,
    AuthRejected,
    CloseTimeout,
    ConnectTimeout,
    CredentialExpired,
    InvalidState,
    ProtocolFailure,
    SessionClosed,
    TranscriptionError,
    TransientFailure,
    describe_failure,
)
from live_coach.domain.events import (
    AUTH_FAILURE_CLOSE_CODES,
    ConnectionClosed,
    ServiceError,
    SessionBegins,
    SessionTerminated,
    TransportEvent,
    parse_message,
)
from live_coach.domain.frame_queue import FrameQueue
from live_coach.domain.handshake import HandshakeStrategy
from live_coach.domain.state import SessionState, validate_transition
from live_coach.ports.audio import AudioFrame
from live_coach.ports.credentials import Credential
from live_coach.ports.transport import TransportClosed, TransportPort

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006
TERMINATE_MESSAGE = json.dumps({"terminate_session": True})

EventCallback = Callable[[TransportEvent], None]


class TranscriptionSession:
    def __init__(
        self,
        transport: TransportPort,
        handshake: HandshakeStrategy,
        credential: Credential,
        endpoint: str,
        on_event: EventCallback | None = None,
        sample_rate: int = 16000,
        connect_timeout: float = 10.0,
        close_timeout: float = 5.0,
        expiry_margin: float = 5.0,
        queue_capacity: int = 64,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._transport = transport
        self._handshake = handshake
        self._credential = credential
        self._endpoint = endpoint
        self._on_event = on_event
        self._sample_rate = sample_rate
        self._connect_timeout = connect_timeout
        self._close_timeout = close_timeout
        self._expiry_margin = expiry_margin
        self._queue_capacity = queue_capacity
        self._clock = clock

        self._state = SessionState.IDLE
        self._reset_run_state()

    def _reset_run_state(self) -> None:
        self._failure: TranscriptionError | None = None
        self._session_id: str | None = None
        self._expired = False
        self._close_timed_out = False
        self._last_error: ServiceError | None = None
        self._remote_close: tuple[int, str] | None = None
        self._frames: FrameQueue | None = None
        self._sent_frames = 0
        self._discarded_frames = 0
        self._terminated = asyncio.Event()
        self._finished = asyncio.Event()
        self._sender_task: asyncio.Task | None = None
        self._receiver_task: asyncio.Task | None = None
        self._watchdog_task: asyncio.Task | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def failure(self) -> TranscriptionError | None:
        return self._failure

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def credential(self) -> Credential:
        return self._credential

    @property
    def expired(self) -> bool:
        return self._expired

    @property
    def close_timed_out(self) -> bool:
        return self._close_timed_out

    @property
    def sent_frames(self) -> int:
        return self._sent_frames

    @property
    def dropped_frames(self) -> int:
        return self._frames.dropped if self._frames else 0

    @property
    def discarded_frames(self) -> int:
        return self._discarded_frames

    @property
    def queued_frames(self) -> int:
        if self._frames is None or self._frames.closed:
            return 0
        return self._frames.qsize()

    def _transition_to(self, target: SessionState) -> None:
        validate_transition(self._state, target)
        logger.info("State: %s -> %s", self._state.name, target.name)
        self._state = target

    async def __aenter__(self) -> "TranscriptionSession":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close(drain=exc_type is None)

    async def open(self) -> None:
        if self._state is not SessionState.IDLE:
            raise InvalidState(f"Cannot open session in state {self._state.name}")
        if self._credential.is_expired(self._clock()):
            raise CredentialExpired("Credential expired before the session was opened")

        self._frames = FrameQueue(self._queue_capacity)
        self._transition_to(SessionState.CONNECTING)

        try:
            await asyncio.wait_for(self._handshake_until_begins(), timeout=self._connect_timeout)
        except asyncio.TimeoutError:
            error = ConnectTimeout(f"No SessionBegins within {self._connect_timeout:.1f}s")
            await self._fail(error)
            raise error from None
        except (TranscriptionError, TransportClosed) as exc:
            if self._state in (SessionState.CLOSING, SessionState.CLOSED):
                await self._finished.wait()
                await self._transport.close(NORMAL_CLOSURE)
                raise SessionClosed("Session closed while connecting") from exc
            error = exc if isinstance(exc, TranscriptionError) else AbnormalClose(exc.code, exc.reason)
            await self._fail(error)
            raise error from exc
        except asyncio.CancelledError:
            await self._abort_connect()
            raise

        self._transition_to(SessionState.ACTIVE)
        self._sender_task = asyncio.create_task(self._send_loop())
        self._receiver_task = asyncio.create_task(self._receive_loop())
        self._watchdog_task = asyncio.create_task(self._expiry_watchdog())
        logger.info(
            "Session %s active (%.0fs of credential left)",
            self._session_id,
            self._credential.seconds_remaining(self._clock()),
        )

    async def _handshake_until_begins(self) -> None:
        await self._handshake.perform_handshake(
            self._transport, self._endpoint, self._credential, self._sample_rate
        )
        self._ensure_not_closing()
        if self._handshake.explicit_auth:
            self._transition_to(SessionState.AUTHENTICATING)

        while True:
            try:
                raw = await self._transport.recv()
            except TransportClosed as closed:
                self._ensure_not_closing()
                if closed.code in AUTH_FAILURE_CLOSE_CODES:
                    raise AuthRejected(
                        f"Service rejected credential ({closed.code}): {closed.reason}",
                        code=closed.code,
                    ) from closed
                raise AbnormalClose(closed.code, closed.reason) from closed

            event = parse_message(raw, self._clock())
            if isinstance(event, SessionBegins):
                self._ensure_not_closing()
                self._session_id = event.session_id
                self._dispatch(event)
                return
            if isinstance(event, ServiceError):
                if event.is_auth_failure:
                    raise AuthRejected(event.message, code=event.code)
                raise TransientFailure(f"Service error during handshake: {event.message}")
            logger.warning("Ignoring %s received before SessionBegins", type(event).__name__)

    def _ensure_not_closing(self) -> None:
        if self._state in (SessionState.CLOSING, SessionState.CLOSED):
            raise SessionClosed("Session closed while connecting")

    # Only method safe to call from the audio thread.
    def send_audio(self, frame: AudioFrame) -> bool:
        state = self._state
        if state is SessionState.IDLE:
            raise InvalidState("Session has not been opened")
        if not state.accepts_audio or self._frames is None:
            raise SessionClosed(f"Cannot send audio while {state.name}")
        return self._frames.offer(frame)

    async def close(self, drain: bool = True) -> None:
        if self._state.is_terminal:
            return
        if self._state is SessionState.IDLE:
            self._transition_to(SessionState.CLOSED)
            self._finished.set()
            return
        if self._state is SessionState.CLOSING:
            await self._finished.wait()
            return

        was_active = self._state is SessionState.ACTIVE
        self._transition_to(SessionState.CLOSING)
        try:
            await self._stop_task(self._sender_task)
            if was_active:
                await self._flush_outbound(drain)
                await self._request_termination()
            elif self._frames is not None:
                self._discarded_frames += self._frames.discard_pending()
        finally:
            await self._release_resources()
            if self._state is SessionState.CLOSING:
                self._transition_to(SessionState.CLOSED)
            code, reason = self._remote_close or (NORMAL_CLOSURE, "client closed")
            self._dispatch(ConnectionClosed(received_at=self._clock(), code=code, reason=reason))
            self._finished.set()
            logger.info(
                "Session %s closed (sent=%d dropped=%d discarded=%d)",
                self._session_id,
                self._sent_frames,
                self.dropped_frames,
                self._discarded_frames,
            )

    async def wait_finished(self) -> SessionState:
        await self._finished.wait()
        return self._state

    def rearm(self, credential: Credential) -> None:
        if not self._state.is_terminal:
            raise InvalidState(f"Cannot re-arm session in state {self._state.name}")
        self._transition_to(SessionState.IDLE)
        self._credential = credential
        self._reset_run_state()

    async def _flush_outbound(self, drain: bool) -> None:
        if self._frames is None:
            return
        if not drain:
            self._discarded_frames += self._frames.discard_pending()
            return
        while (frame := self._frames.get_nowait()) is not None:
            try:
                await self._transport.send(frame.payload)
            except TransportClosed:
                self._discarded_frames += 1 + self._frames.discard_pending()
                return
            self._sent_frames += 1

    async def _request_termination(self) -> None:
        if self._remote_close is not None:
            return
        try:
            await self._transport.send(TERMINATE_MESSAGE)
        except TransportClosed:
            return
        try:
            await asyncio.wait_for(self._terminated.wait(), timeout=self._close_timeout)
        except asyncio.TimeoutError:
            self._close_timed_out = True
            logger.warning("%s", CloseTimeout(f"No close acknowledgment within {self._close_timeout:.1f}s, forcing closure"))

    async def _send_loop(self) -> None:
        frames = self._frames
        while True:
            frame = await frames.get()
            try:
                await self._transport.send(frame.payload)
            except TransportClosed:
                logger.debug("Transport closed while sending frame %d", frame.sequence)
                return
            self._sent_frames += 1

    async def _receive_loop(self) -> None:
        try:
            await self._receive_messages()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Receiver stopped unexpectedly")
            await self._fail(ProtocolFailure(f"Receiver stopped: {exc!r}"))

    async def _receive_messages(self) -> None:
        while True:
            try:
                raw = await self._transport.recv()
            except TransportClosed as closed:
                await self._handle_remote_close(closed.code, closed.reason)
                return

            try:
                event = parse_message(raw, self._clock())
            except ProtocolFailure as exc:
                logger.warning("Skipping malformed message: %s (raw=%r)", exc, exc.raw)
                continue

            if isinstance(event, SessionTerminated):
                logger.debug("Session %s terminated by service", self._session_id)
                self._terminated.set()
                continue

            if isinstance(event, ServiceError):
                logger.error("Service error (code=%s): %s", event.code, event.message)
                self._last_error = event
            else:
                self._last_error = None
            self._dispatch(event)

    async def _handle_remote_close(self, code: int, reason: str) -> None:
        self._remote_close = (code, reason)
        if self._state is SessionState.CLOSING:
            self._terminated.set()
            return
        if self._state is not SessionState.ACTIVE:
            return

        self._dispatch(ConnectionClosed(received_at=self._clock(), code=code, reason=reason))
        if code == NORMAL_CLOSURE:
            logger.info("Service closed session %s normally", self._session_id)
            self._transition_to(SessionState.CLOSED)
        else:
            if self._last_error is not None and self._last_error.is_auth_failure:
                self._failure = AuthRejected(self._last_error.message, code=code)
            else:
                self._failure = AbnormalClose(code, reason)
            logger.error("Session %s failed: %s", self._session_id, self._failure)
            self._transition_to(SessionState.FAILED)
        await self._release_resources()
        self._finished.set()

    async def _expiry_watchdog(self) -> None:
        remaining = self._credential.seconds_remaining(self._clock()) - self._expiry_margin
        if remaining > 0:
            await asyncio.sleep(remaining)
        if self._state is SessionState.ACTIVE:
            logger.warning("Credential for session %s about to expire, closing", self._session_id)
            self._expired = True
            await self.close(drain=True)

    async def _fail(self, error: TranscriptionError) -> None:
        self._failure = error
        if not self._state.is_terminal:
            self._transition_to(SessionState.FAILED)
        logger.error("Session failed: %s", describe_failure(error))
        await self._release_resources()
        code = getattr(error, "code", None) or ABNORMAL_CLOSURE
        self._dispatch(ConnectionClosed(received_at=self._clock(), code=code, reason=str(error)))
        self._finished.set()

    async def _abort_connect(self) -> None:
        if self._state in (SessionState.CONNECTING, SessionState.AUTHENTICATING):
            self._transition_to(SessionState.CLOSING)
        await self._release_resources()
        if self._state is SessionState.CLOSING:
            self._transition_to(SessionState.CLOSED)
        self._finished.set()

    async def _release_resources(self) -> None:
        for task in (self._sender_task, self._receiver_task, self._watchdog_task):
            await self._stop_task(task)
        try:
            await self._transport.close(NORMAL_CLOSURE)
        except Exception:
            logger.warning("Error closing transport", exc_info=True)
        if self._frames is not None and not self._frames.closed:
            self._discarded_frames += self._frames.discard_pending()
            await self._frames.close()

    @staticmethod
    async def _stop_task(task: asyncio.Task | None) -> None:
        current = asyncio.current_task()
        if task is None or task.done() or task is current:
            return
        pending_cancels = current.cancelling() if current is not None else 0
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            if current is not None and current.cancelling() > pending_cancels:
                raise
        except Exception:
            logger.warning("Session task %s ended with an error", task.get_name(), exc_info=True)

    def _dispatch(self, event: TransportEvent) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(event)
        except Exception:
            logger.exception("Event handler failed on %s, skipping", type(event).__name__)
