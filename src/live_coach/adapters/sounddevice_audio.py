import logging
import os

import numpy as np
import sounddevice as sd

from live_coach.domain.encoder import AudioEncoding, PcmEncoder
from live_coach.domain.errors import CaptureFailure
from live_coach.ports.audio import FrameSink

logger = logging.getLogger(__name__)


class SounddeviceCapture:
    def __init__(
        self,
        device: str | int | None = None,
        sample_rate: int = 16000,
        block_size: int = 2048,
        encoding: AudioEncoding = "binary",
    ) -> None:
        self._device = device
        self._sample_rate = sample_rate
        self._block_size = block_size
        self._encoding = encoding
        self._stream: sd.InputStream | None = None
        self._encoder: PcmEncoder | None = None
        self._callback_errors = 0

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def block_size(self) -> int:
        return self._block_size

    @property
    def running(self) -> bool:
        return self._stream is not None

    @property
    def frames_captured(self) -> int:
        return self._encoder.next_sequence if self._encoder else 0

    async def __aenter__(self) -> "SounddeviceCapture":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def start(self, sink: FrameSink) -> None:
        if self._stream is not None:
            return
        self._encoder = PcmEncoder(self._block_size, self._encoding)
        encoder = self._encoder

        def audio_callback(indata: np.ndarray, frames: int, time_info, status) -> None:
            if status:
                logger.warning("Audio capture status: %s", status)
            try:
                sink(encoder.encode(indata[:, 0]))
            except Exception:
                self._callback_errors += 1
                if self._callback_errors == 1:
                    logger.exception("Audio callback failed, dropping block")

        device = self._resolve_device()
        try:
            self._stream = sd.InputStream(
                device=device,
                samplerate=self._sample_rate,
                channels=1,
                dtype="float32",
                blocksize=self._block_size,
                callback=audio_callback,
            )
            self._stream.start()
        except sd.PortAudioError as exc:
            self._stream = None
            raise CaptureFailure(f"Could not open input device {device!r}: {exc}") from exc
        logger.info(
            "Audio capture started (device=%s, rate=%d, block=%d, encoding=%s)",
            device, self._sample_rate, self._block_size, self._encoding,
        )

    async def stop(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except sd.PortAudioError:
            logger.warning("Error closing input stream", exc_info=True)
        logger.info("Audio capture stopped (%d frames)", self.frames_captured)

    def _resolve_device(self) -> str | int | None:
        if self._device is None:
            return None
        if isinstance(self._device, int):
            return self._device
        try:
            return int(self._device)
        except ValueError:
            pass
        for i, dev in enumerate(sd.query_devices()):
            if self._device.lower() in dev["name"].lower() and dev["max_input_channels"] > 0:
                logger.info("Resolved device '%s' -> %d (%s)", self._device, i, dev["name"])
                return i
        os.environ["PIPEWIRE_NODE"] = self._device
        logger.info("Device '%s' not in PortAudio, set PIPEWIRE_NODE for PipeWire routing", self._device)
        return None
