import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from live_coach.config import LiveCoachConfig, redact_secret
from live_coach.domain.aggregator import Segment, TerminalNotice
from live_coach.domain.errors import (
    AuthFailure,
    AuthRejected,
    CaptureFailure,
    RetriesExhausted,
    TranscriptionError,
    describe_failure,
)
from live_coach.log_format import ColoredFormatter
from live_coach.ports.transcript import PipelineStatus, TranscriptListener

ENV_FILE_PATH = Path.home() / ".config" / "live-coach" / "env"

EXIT_ERROR = 1
EXIT_AUTH = 2
EXIT_UNAVAILABLE = 3
EXIT_CAPTURE = 4


def _load_env_file(path: Path = ENV_FILE_PATH) -> None:
    if not path.exists():
        return
    with open(path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                continue
            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip().strip("'\"")
            if key not in os.environ:
                os.environ[key] = value


def _setup_logging(verbose: bool, log_file: str) -> None:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ColoredFormatter(datefmt="%H:%M:%S"))
    handlers: list[logging.Handler] = [handler]
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s"))
        handlers.append(file_handler)
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, handlers=handlers, force=True)

    if verbose:
        logging.getLogger("websockets").setLevel(logging.INFO)
        logging.getLogger("httpcore").setLevel(logging.INFO)
        logging.getLogger("httpx").setLevel(logging.INFO)
    else:
        logging.getLogger("httpx").setLevel(logging.WARNING)


def exit_code_for(error: TranscriptionError) -> int:
    if isinstance(error, RetriesExhausted):
        return EXIT_UNAVAILABLE
    if isinstance(error, (AuthFailure, AuthRejected)):
        return EXIT_AUTH
    if isinstance(error, CaptureFailure):
        return EXIT_CAPTURE
    return EXIT_ERROR


class ConsoleListener(TranscriptListener):
    def __init__(self, stream=None) -> None:
        self._stream = stream or sys.stdout
        self._partial_shown = False

    def on_status(self, status: PipelineStatus, detail: str) -> None:
        if status is PipelineStatus.RECONNECTING:
            self._clear_partial()
            print(f"[reconnecting] {detail}", file=self._stream, flush=True)
        elif status is PipelineStatus.START_FAILED:
            print(f"[could not start] {detail}", file=self._stream, flush=True)
        elif status is PipelineStatus.INTERRUPTED:
            self._clear_partial()
            print(f"[connection lost] {detail}", file=self._stream, flush=True)

    def on_partial(self, segment: Segment) -> None:
        self._stream.write(f"\r\033[K{segment.text}")
        self._stream.flush()
        self._partial_shown = True

    def on_segment(self, segment: Segment) -> None:
        self._clear_partial()
        marker = " (?)" if segment.low_confidence else ""
        print(f"{segment.text}{marker}", file=self._stream, flush=True)

    def on_feedback(self, cues: list[str]) -> None:
        for cue in cues:
            print(f"  >> {cue}", file=self._stream, flush=True)

    def on_terminal(self, notice: TerminalNotice) -> None:
        self._clear_partial()

    def _clear_partial(self) -> None:
        if self._partial_shown:
            self._stream.write("\r\033[K")
            self._stream.flush()
            self._partial_shown = False


def main() -> None:
    _load_env_file()
    parser = argparse.ArgumentParser(description="Live speech transcription with speaking feedback")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    parser.add_argument("--auth-mode", choices=["url-token", "auth-message"], help="Streaming authentication mode")
    parser.add_argument("--device", help="Input device name or index")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("run", help="Transcribe the microphone live (default)")
    subparsers.add_parser("token", help="Fetch a streaming token and print its details")
    subparsers.add_parser("check", help="Run startup health checks")

    args = parser.parse_args()

    config = LiveCoachConfig()
    if args.auth_mode:
        config.auth_mode = args.auth_mode
    if args.device:
        config.capture_device = args.device

    _setup_logging(args.verbose, config.log_file)

    if args.command == "check":
        sys.exit(_run_checks(config))
    try:
        if args.command == "token":
            asyncio.run(_run_token(config))
        else:
            asyncio.run(_run_live(config))
    except TranscriptionError as exc:
        logging.error("%s", describe_failure(exc))
        sys.exit(exit_code_for(exc))


def _run_checks(config: LiveCoachConfig) -> int:
    from live_coach.health import has_critical_failures, run_startup_checks

    results = run_startup_checks(config)
    return EXIT_ERROR if has_critical_failures(results) else 0


async def _run_token(config: LiveCoachConfig) -> None:
    from live_coach.adapters.assemblyai_token import AssemblyAITokenBroker

    broker = AssemblyAITokenBroker(token_url=config.token_url, timeout=config.connect_timeout_seconds)
    credential = await broker.fetch_token(config.resolve_api_key(), config.token_ttl_seconds)
    print(f"token={redact_secret(credential.token)} ttl={credential.ttl_seconds}s")


async def _run_live(config: LiveCoachConfig) -> None:
    from live_coach.domain.pipeline import run_until_signal
    from live_coach.factory import create_pipeline
    from live_coach.health import has_critical_failures, run_startup_checks

    results = run_startup_checks(config)
    if has_critical_failures(results):
        logging.error("Critical health check failures, aborting startup")
        sys.exit(EXIT_ERROR)

    pipeline = create_pipeline(config, listener=ConsoleListener())

    shutdown_event = asyncio.Event()
    shutdown_triggered = False

    def handle_signal() -> None:
        nonlocal shutdown_triggered
        if shutdown_triggered:
            logging.warning("Forced exit")
            sys.exit(EXIT_ERROR)
        shutdown_triggered = True
        logging.info("Shutting down...")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal)

    await run_until_signal(pipeline, shutdown_event.wait)

    stats = pipeline.aggregator.stats
    logging.info(
        "Transcribed %d segments, %d words, average confidence %.0f%%",
        stats.final_count,
        stats.word_count,
        stats.average_confidence * 100,
    )


if __name__ == "__main__":
    main()
