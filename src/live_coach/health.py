import logging
import threading
from dataclasses import dataclass

import numpy as np
import sounddevice as sd

from live_coach.config import LiveCoachConfig, redact_secret
from live_coach.domain.encoder import float_to_pcm16

logger = logging.getLogger(__name__)

CRITICAL_CHECKS = {"audio_device", "api_key"}


@dataclass
class HealthCheckResult:
    name: str
    passed: bool
    detail: str


def run_startup_checks(config: LiveCoachConfig, listen_seconds: float = 0.5) -> list[HealthCheckResult]:
    results = [
        _check_audio_device(config),
        _check_microphone_level(config, listen_seconds),
        _check_api_key(config),
    ]

    passed = sum(1 for r in results if r.passed)
    logger.info("Health check: %d/%d passed", passed, len(results))
    for result in results:
        level = logging.INFO if result.passed else logging.WARNING
        symbol = "OK" if result.passed else "FAIL"
        logger.log(level, "  [%s] %s: %s", symbol, result.name, result.detail)

    return results


def has_critical_failures(results: list[HealthCheckResult]) -> bool:
    return any(not r.passed and r.name in CRITICAL_CHECKS for r in results)


def _find_input_device(name: str) -> int | None:
    for i, dev in enumerate(sd.query_devices()):
        if name.lower() in dev["name"].lower() and dev["max_input_channels"] > 0:
            return i
    return None


def _check_audio_device(config: LiveCoachConfig) -> HealthCheckResult:
    name = "audio_device"
    try:
        if config.capture_device:
            index = _find_input_device(config.capture_device)
            if index is not None:
                return HealthCheckResult(name=name, passed=True, detail=f"Device '{config.capture_device}' found")
        default = sd.query_devices(kind="input")
        prefix = f"'{config.capture_device}' not found, " if config.capture_device else ""
        return HealthCheckResult(name=name, passed=True, detail=f"{prefix}default input: {default['name']}")
    except sd.PortAudioError:
        return HealthCheckResult(name=name, passed=False, detail="No input devices available")
    except Exception as exc:
        return HealthCheckResult(name=name, passed=False, detail=str(exc))


def _check_microphone_level(config: LiveCoachConfig, listen_seconds: float) -> HealthCheckResult:
    name = "microphone_level"
    try:
        captured: list[np.ndarray] = []
        blocks_needed = max(1, int(listen_seconds * config.sample_rate / config.block_size))
        done = threading.Event()

        def callback(indata, frames, time_info, status):
            captured.append(indata[:, 0].copy())
            if len(captured) >= blocks_needed:
                done.set()

        device = _find_input_device(config.capture_device) if config.capture_device else None
        stream = sd.InputStream(
            device=device,
            samplerate=config.sample_rate,
            channels=1,
            dtype="float32",
            blocksize=config.block_size,
            callback=callback,
        )
        stream.start()
        done.wait(timeout=listen_seconds + 2.0)
        stream.stop()
        stream.close()

        if not captured:
            return HealthCheckResult(name=name, passed=False, detail="No audio frames captured")

        pcm = float_to_pcm16(np.concatenate(captured))
        rms = float(np.sqrt(np.mean(pcm.astype(np.float64) ** 2)))
        peak = int(np.max(np.abs(pcm.astype(np.int32))))
        if rms < 1.0:
            return HealthCheckResult(name=name, passed=False, detail=f"Audio silent (rms={rms:.0f}, peak={peak}), mic may be muted")
        return HealthCheckResult(name=name, passed=True, detail=f"Capturing audio (rms={rms:.0f}, peak={peak})")
    except Exception as exc:
        return HealthCheckResult(name=name, passed=False, detail=str(exc))


def _check_api_key(config: LiveCoachConfig) -> HealthCheckResult:
    name = "api_key"
    key = config.resolve_api_key()
    if not key:
        source = config.api_key_file or "LIVE_COACH_API_KEY"
        return HealthCheckResult(name=name, passed=False, detail=f"Missing ({source} not configured)")
    return HealthCheckResult(name=name, passed=True, detail=f"Loaded ({redact_secret(key)})")
