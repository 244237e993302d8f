from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class AudioFrame:
    sequence: int
    pcm: bytes
    payload: bytes | str
    rms: float = 0.0

    @property
    def sample_count(self) -> int:
        return len(self.pcm) // 2


FrameSink = Callable[[AudioFrame], None]


class AudioCapturePort(Protocol):
    @property
    def sample_rate(self) -> int: ...
    @property
    def block_size(self) -> int: ...
    async def start(self, sink: FrameSink) -> None: ...
    async def stop(self) -> None: ...
