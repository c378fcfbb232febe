from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class RecorderConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STREAM_RECORDER_")

    endpoint_url: str = "wss://api.assemblyai.com/v2/realtime"
    credential_file: str = ""
    credential_env: str = "ASSEMBLYAI_API_KEY"
    connect_timeout_seconds: float = 10.0
    close_timeout_seconds: float = 5.0

    capture_device: str = ""
    capture_gain: float = 1.0
    sample_rate: int = 16000
    channels: int = 1
    frame_duration_ms: int = 20
    capture_queue_frames: int = 200
    send_queue_frames: int = 250

    storage_dir: str = str(Path.home() / ".local" / "share" / "stream-recorder")

    log_file: str = ""
