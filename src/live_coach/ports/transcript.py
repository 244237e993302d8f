from enum import Enum, auto

from live_coach.domain.aggregator import Segment, TerminalNotice


class PipelineStatus(Enum):
    IDLE = auto()
    STARTING = auto()
    LIVE = auto()
    RECONNECTING = auto()
    STOPPED = auto()
    START_FAILED = auto()
    INTERRUPTED = auto()


class TranscriptListener:
    def on_status(self, status: PipelineStatus, detail: str) -> None:
        pass

    def on_partial(self, segment: Segment) -> None:
        pass

    def on_segment(self, segment: Segment) -> None:
        pass

    def on_feedback(self, cues: list[str]) -> None:
        pass

    def on_terminal(self, notice: TerminalNotice) -> None:
        pass
