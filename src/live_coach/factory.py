import logging

from live_coach.adapters.assemblyai_token import AssemblyAITokenBroker
from live_coach.adapters.sounddevice_audio import SounddeviceCapture
from live_coach.adapters.websocket_transport import WebsocketsTransport
from live_coach.config import LiveCoachConfig
from live_coach.domain.backoff import BackoffPolicy
from live_coach.domain.feedback import FeedbackDeriver, FillerLexicon
from live_coach.domain.handshake import create_handshake
from live_coach.domain.pipeline import LiveTranscriptionPipeline, SessionFactory
from live_coach.domain.session import TranscriptionSession
from live_coach.ports.transcript import TranscriptListener

logger = logging.getLogger(__name__)


def create_capture(config: LiveCoachConfig) -> SounddeviceCapture:
    return SounddeviceCapture(
        device=config.capture_device or None,
        sample_rate=config.sample_rate,
        block_size=config.block_size,
        encoding=config.audio_encoding,
    )


def create_backoff(config: LiveCoachConfig) -> BackoffPolicy:
    return BackoffPolicy(
        base_seconds=config.retry_base_seconds,
        cap_seconds=config.retry_cap_seconds,
        max_attempts=config.retry_max_attempts,
    )


def create_feedback(config: LiveCoachConfig) -> FeedbackDeriver:
    return FeedbackDeriver(
        lexicon=FillerLexicon(config.filler_words),
        window_words=config.feedback_window_words,
        fast_wpm=config.fast_wpm,
        slow_wpm=config.slow_wpm,
        engaging_question_ratio=config.engaging_question_ratio,
        few_question_ratio=config.few_question_ratio,
    )


def create_session_factory(config: LiveCoachConfig) -> SessionFactory:
    transport = WebsocketsTransport()
    handshake = create_handshake(config.auth_mode)

    def session_factory(credential, on_event) -> TranscriptionSession:
        return TranscriptionSession(
            transport=transport,
            handshake=handshake,
            credential=credential,
            endpoint=config.realtime_url,
            on_event=on_event,
            sample_rate=config.sample_rate,
            connect_timeout=config.connect_timeout_seconds,
            close_timeout=config.close_timeout_seconds,
            expiry_margin=config.expiry_margin_seconds,
            queue_capacity=config.frame_queue_capacity,
        )

    return session_factory


def create_pipeline(
    config: LiveCoachConfig,
    listener: TranscriptListener | None = None,
) -> LiveTranscriptionPipeline:
    logger.debug("Building pipeline (auth_mode=%s, encoding=%s)", config.auth_mode, config.audio_encoding)
    return LiveTranscriptionPipeline(
        broker=AssemblyAITokenBroker(token_url=config.token_url, timeout=config.connect_timeout_seconds),
        session_factory=create_session_factory(config),
        capture=create_capture(config),
        feedback=create_feedback(config),
        api_key=config.resolve_api_key(),
        token_ttl_seconds=config.token_ttl_seconds,
        backoff=create_backoff(config),
        listener=listener,
    )
