import logging
from collections.abc import Callable
from pathlib import Path

from stream_recorder.adapters.raw_sink import RawAppendSink
from stream_recorder.adapters.secret_credentials import SecretCredentials
from stream_recorder.adapters.websocket_client import WebSocketTranscriber
from stream_recorder.config import RecorderConfig
from stream_recorder.domain.session_controller import SessionController
from stream_recorder.domain.wav import WavContainerWriter
from stream_recorder.ports.audio import FrameSourcePort

logger = logging.getLogger(__name__)


def create_capture(config: RecorderConfig) -> FrameSourcePort:
    from stream_recorder.adapters.sounddevice_audio import SounddeviceCapture

    return SounddeviceCapture(
        device=config.capture_device or None,
        sample_rate=config.sample_rate,
        channels=config.channels,
        frame_duration_ms=config.frame_duration_ms,
        gain=config.capture_gain,
        queue_frames=config.capture_queue_frames,
    )


def create_client_factory(config: RecorderConfig) -> Callable[[], WebSocketTranscriber]:
    def create_client() -> WebSocketTranscriber:
        return WebSocketTranscriber(
            endpoint_url=config.endpoint_url,
            sample_rate=config.sample_rate,
            open_timeout=config.connect_timeout_seconds,
            close_timeout=config.close_timeout_seconds,
        )

    return create_client


def create_credentials(config: RecorderConfig) -> SecretCredentials:
    return SecretCredentials(secret_file=config.credential_file, env_var=config.credential_env)


def create_controller(
    config: RecorderConfig,
    capture: FrameSourcePort | None = None,
) -> SessionController:
    storage_dir = Path(config.storage_dir).expanduser()
    return SessionController(
        source=capture or create_capture(config),
        client_factory=create_client_factory(config),
        credentials=create_credentials(config),
        sink_factory=RawAppendSink,
        wav_writer=WavContainerWriter(storage_dir),
        storage_dir=storage_dir,
        sample_rate=config.sample_rate,
        channels=config.channels,
        send_queue_frames=config.send_queue_frames,
        drain_timeout_seconds=config.close_timeout_seconds,
    )
