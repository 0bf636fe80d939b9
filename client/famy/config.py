"""Client-wide constants resolved from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass(frozen=True, slots=True)
class ClientConfig:
    api_host: str = field(default_factory=lambda: os.getenv("FAMY_API_HOST", "http://localhost:8000"))
    transcription_url: str = field(
        default_factory=lambda: os.getenv("FAMY_TRANSCRIPTION_URL", "wss://api.assemblyai.com/v2/realtime/ws")
    )
    sample_rate: int = field(default_factory=lambda: _env_int("FAMY_SAMPLE_RATE", 16000))
    channels: int = 1
    time_slice_ms: int = field(default_factory=lambda: _env_int("FAMY_TIME_SLICE_MS", 500))
    level_block_ms: int = 50
    volume_gain: float = 2.0
    # base64 JSON envelopes or raw binary frames, fixed per deployment
    audio_encoding: str = field(default_factory=lambda: os.getenv("FAMY_AUDIO_ENCODING", "base64"))
    connect_timeout: float = field(default_factory=lambda: _env_float("FAMY_CONNECT_TIMEOUT", 10.0))
    close_timeout: float = field(default_factory=lambda: _env_float("FAMY_CLOSE_TIMEOUT", 5.0))
    http_timeout: float = field(default_factory=lambda: _env_float("FAMY_HTTP_TIMEOUT", 15.0))
    dispatch_timeout: float = field(default_factory=lambda: _env_float("FAMY_DISPATCH_TIMEOUT", 60.0))
    receive_poll: float = 0.25
    elapsed_tick_seconds: float = 1.0
    settings_file: str = "settings.json"
    recordings_dir: str = "recordings"
    log_history: int = 200
    fallback_answer: str = "Sorry, I couldn't reach the conversation service. Please try again."


CONFIG = ClientConfig()
