from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class TranscribeConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LIVE_TRANSCRIBE_")

    host: str = "localhost"
    port: int = 8000
    endpoint: str = "/asr"

    connect_retries: int = 5
    connect_retry_delay_ms: int = 2000
    ready_timeout_seconds: float = 5.0

    readiness_probe_attempts: int = 120
    readiness_probe_delay_ms: int = 2000
    readiness_probe_timeout_seconds: float = 3.0

    capture_device: str = ""
    target_sample_rate: int = 16000
    raw_block_ms: int = 20
    container_slice_ms: int = 100
    container_format: Literal["webm", "ogg"] = "webm"
    container_bitrate: str = "32k"
    ffmpeg_path: str = "ffmpeg"

    log_file: str = ""

    @property
    def ws_url(self) -> str:
        return f"ws://{self.host}:{self.port}{self.endpoint}"

    @property
    def http_url(self) -> str:
        return f"http://{self.host}:{self.port}/"

    @property
    def connect_retry_delay(self) -> float:
        return self.connect_retry_delay_ms / 1000

    @property
    def readiness_probe_delay(self) -> float:
        return self.readiness_probe_delay_ms / 1000
