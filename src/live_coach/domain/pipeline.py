import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from live_coach.domain.aggregator import Segment, TerminalNotice, TranscriptAggregator
from live_coach.domain.backoff import BackoffPolicy, is_retryable, retry_with_backoff
from live_coach.domain.errors import InvalidState, SessionClosed, TranscriptionError
from live_coach.domain.events import TransportEvent
from live_coach.domain.feedback import FeedbackDeriver
from live_coach.domain.session import TranscriptionSession
from live_coach.domain.state import SessionState
from live_coach.ports.audio import AudioCapturePort, AudioFrame
from live_coach.ports.credentials import Credential, CredentialBrokerPort
from live_coach.ports.transcript import PipelineStatus, TranscriptListener

logger = logging.getLogger(__name__)

SessionFactory = Callable[[Credential, Callable[[TransportEvent], None]], TranscriptionSession]


class _StopRequested(Exception):
    pass


class LiveTranscriptionPipeline:
    def __init__(
        self,
        broker: CredentialBrokerPort,
        session_factory: SessionFactory,
        capture: AudioCapturePort,
        feedback: FeedbackDeriver,
        api_key: str,
        token_ttl_seconds: int = 300,
        backoff: BackoffPolicy | None = None,
        listener: TranscriptListener | None = None,
    ) -> None:
        self._broker = broker
        self._session_factory = session_factory
        self._capture = capture
        self._feedback = feedback
        self._api_key = api_key
        self._token_ttl_seconds = token_ttl_seconds
        self._backoff = backoff or BackoffPolicy()
        self._listener = listener or TranscriptListener()

        self._aggregator = TranscriptAggregator(
            on_partial=self._listener.on_partial,
            on_segment_finalized=self._handle_segment,
            on_terminal=self._handle_terminal,
        )
        self._session: TranscriptionSession | None = None
        self._status = PipelineStatus.IDLE
        self._stop_event = asyncio.Event()
        self._running = False
        self._unrouted_frames = 0
        self._reconnects = 0

    @property
    def status(self) -> PipelineStatus:
        return self._status

    @property
    def aggregator(self) -> TranscriptAggregator:
        return self._aggregator

    @property
    def session(self) -> TranscriptionSession | None:
        return self._session

    @property
    def unrouted_frames(self) -> int:
        return self._unrouted_frames

    @property
    def reconnects(self) -> int:
        return self._reconnects

    def _set_status(self, status: PipelineStatus, detail: str = "") -> None:
        if status is self._status and not detail:
            return
        self._status = status
        logger.info("Pipeline %s%s", status.name, f": {detail}" if detail else "")
        try:
            self._listener.on_status(status, detail)
        except Exception:
            logger.exception("Status listener failed")

    def route_frame(self, frame: AudioFrame) -> None:
        session = self._session
        if session is None or not session.state.accepts_audio:
            self._unrouted_frames += 1
            return
        try:
            session.send_audio(frame)
        except (SessionClosed, InvalidState):
            self._unrouted_frames += 1

    async def run(self) -> None:
        if self._running:
            raise InvalidState("Pipeline is already running")
        self._running = True
        self._stop_event.clear()
        self._set_status(PipelineStatus.STARTING)

        try:
            async with contextlib.AsyncExitStack() as stack:
                stack.push_async_callback(self._close_session)
                await retry_with_backoff(
                    self._establish,
                    self._backoff,
                    sleep=self._pause,
                    on_retry=self._log_retry,
                )
                await self._capture.start(self.route_frame)
                stack.push_async_callback(self._capture.stop)
                self._set_status(PipelineStatus.LIVE)
                await self._supervise()
        except _StopRequested:
            pass
        except TranscriptionError as exc:
            if self._stop_event.is_set():
                logger.debug("Ignoring %s raised during shutdown", exc)
            else:
                failed = PipelineStatus.START_FAILED
                if self._status is not PipelineStatus.STARTING:
                    failed = PipelineStatus.INTERRUPTED
                self._set_status(failed, str(exc))
                raise
        finally:
            self._running = False

        self._set_status(PipelineStatus.STOPPED)

    async def stop(self) -> None:
        self._stop_event.set()
        await self._capture.stop()
        session = self._session
        if session is not None and session.state in (SessionState.CONNECTING, SessionState.AUTHENTICATING):
            await session.close(drain=False)

    async def _supervise(self) -> None:
        while True:
            session = self._session
            finished = asyncio.create_task(session.wait_finished())
            stopping = asyncio.create_task(self._stop_event.wait())
            try:
                await asyncio.wait({finished, stopping}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for task in (finished, stopping):
                    task.cancel()

            if self._stop_event.is_set():
                return

            if session.expired:
                logger.info("Credential expired, reconnecting with a fresh token")
                await self._reconnect("credential expired", initial_delay=0.0)
                continue

            failure = session.failure
            if failure is None:
                logger.info("Service ended session %s normally", session.session_id)
                return
            if not is_retryable(failure):
                raise failure
            await self._reconnect(str(failure), initial_delay=self._backoff.delay(1))

    async def _reconnect(self, reason: str, initial_delay: float) -> None:
        self._set_status(PipelineStatus.RECONNECTING, reason)
        await retry_with_backoff(
            self._establish,
            self._backoff,
            sleep=self._pause,
            on_retry=self._log_retry,
            initial_delay=initial_delay,
        )
        self._reconnects += 1
        self._set_status(PipelineStatus.LIVE)

    async def _establish(self) -> None:
        if self._stop_event.is_set():
            raise _StopRequested()
        credential = await self._broker.fetch_token(self._api_key, self._token_ttl_seconds)
        if self._stop_event.is_set():
            raise _StopRequested()

        if self._session is None:
            self._session = self._session_factory(credential, self._aggregator.on_event)
        else:
            self._session.rearm(credential)
        await self._session.open()

    async def _pause(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise _StopRequested()

    def _log_retry(self, attempt: int, delay: float, error: BaseException) -> None:
        detail = f"attempt {attempt + 1}/{self._backoff.max_attempts} in {delay:.0f}s ({error})"
        if self._status is PipelineStatus.RECONNECTING:
            self._set_status(PipelineStatus.RECONNECTING, detail)

    async def _close_session(self) -> None:
        if self._session is not None:
            await self._session.close(drain=True)

    def _handle_segment(self, segment: Segment) -> None:
        self._listener.on_segment(segment)
        cues = self._feedback.derive(self._aggregator.finalized)
        if cues:
            self._listener.on_feedback(cues)

    def _handle_terminal(self, notice: TerminalNotice) -> None:
        self._listener.on_terminal(notice)


async def run_until_signal(pipeline: LiveTranscriptionPipeline, wait: Callable[[], Awaitable[object]]) -> None:
    run_task = asyncio.create_task(pipeline.run())
    waiter = asyncio.create_task(wait())
    try:
        await asyncio.wait({run_task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not run_task.done():
            await pipeline.stop()
        await run_task
