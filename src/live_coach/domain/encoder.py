import base64
import json
from typing import Literal

import numpy as np

from live_coach.ports.audio import AudioFrame

AudioEncoding = Literal["binary", "json-base64"]

INT16_MAX = 32767
INT16_SCALE = 32768.0


class PcmEncoder:
    # Runs on the audio thread, buffers are allocated once.
    def __init__(self, block_size: int, encoding: AudioEncoding = "binary") -> None:
        if block_size <= 0:
            raise ValueError(f"block_size must be positive, got {block_size}")
        self._block_size = block_size
        self._encoding = encoding
        self._scratch = np.zeros(block_size, dtype=np.float32)
        self._pcm = np.zeros(block_size, dtype=np.int16)
        self._sequence = 0

    @property
    def block_size(self) -> int:
        return self._block_size

    @property
    def encoding(self) -> AudioEncoding:
        return self._encoding

    @property
    def next_sequence(self) -> int:
        return self._sequence

    def encode(self, block: np.ndarray) -> AudioFrame:
        if block.shape[0] != self._block_size:
            raise ValueError(f"Expected {self._block_size} samples, got {block.shape[0]}")

        scratch = self._scratch
        np.copyto(scratch, block, casting="unsafe")
        np.nan_to_num(scratch, copy=False, nan=0.0, posinf=1.0, neginf=-1.0)
        np.clip(scratch, -1.0, 1.0, out=scratch)
        rms = float(np.sqrt(np.dot(scratch, scratch) / self._block_size))

        np.multiply(scratch, INT16_SCALE, out=scratch)
        np.minimum(scratch, INT16_MAX, out=scratch)
        np.copyto(self._pcm, scratch, casting="unsafe")

        pcm = self._pcm.tobytes()
        frame = AudioFrame(
            sequence=self._sequence,
            pcm=pcm,
            payload=self._pack(pcm),
            rms=rms,
        )
        self._sequence += 1
        return frame

    def _pack(self, pcm: bytes) -> bytes | str:
        if self._encoding == "json-base64":
            return json.dumps({"audio_data": base64.b64encode(pcm).decode("ascii")})
        return pcm


def float_to_pcm16(samples: np.ndarray) -> np.ndarray:
    clipped = np.clip(np.nan_to_num(samples.astype(np.float32), nan=0.0), -1.0, 1.0)
    return np.minimum(clipped * INT16_SCALE, INT16_MAX).astype(np.int16)
