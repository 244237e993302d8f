from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from live_coach.domain.feedback import DEFAULT_FILLER_WORDS


def redact_secret(secret: str) -> str:
    if len(secret) <= 8:
        return "***"
    return f"{secret[:4]}...{secret[-4:]}"


class LiveCoachConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LIVE_COACH_")

    api_key: str = ""
    api_key_file: str = ""
    token_url: str = "https://api.assemblyai.com/v2/realtime/token"
    realtime_url: str = "wss://api.assemblyai.com/v2/realtime/ws"
    token_ttl_seconds: int = Field(default=300, ge=60, le=3600)
    auth_mode: Literal["url-token", "auth-message"] = "url-token"

    sample_rate: int = 16000
    block_size: int = Field(default=2048, gt=0)
    audio_encoding: Literal["binary", "json-base64"] = "binary"
    capture_device: str = ""

    connect_timeout_seconds: float = 10.0
    close_timeout_seconds: float = 5.0
    expiry_margin_seconds: float = 5.0
    frame_queue_capacity: int = Field(default=64, gt=0)

    retry_base_seconds: float = 1.0
    retry_cap_seconds: float = 30.0
    retry_max_attempts: int = Field(default=5, ge=1)

    filler_words: list[str] = list(DEFAULT_FILLER_WORDS)
    feedback_window_words: int = 60
    fast_wpm: float = 200.0
    slow_wpm: float = 90.0
    engaging_question_ratio: float = 0.3
    few_question_ratio: float = 0.1

    log_file: str = ""

    def read_secret(self, path: str) -> str:
        if not path:
            return ""
        try:
            with open(path) as f:
                return f.read().strip()
        except FileNotFoundError:
            return ""

    def resolve_api_key(self) -> str:
        if self.api_key.strip():
            return self.api_key.strip()
        return self.read_secret(self.api_key_file)
