import asyncio
from collections.abc import AsyncIterator
from pathlib import Path

import numpy as np
import pytest

from stream_recorder.adapters.raw_sink import RawAppendSink
from stream_recorder.domain.broadcast import Broadcast, Subscription
from stream_recorder.domain.session_controller import SessionController
from stream_recorder.domain.wav import WavContainerWriter
from stream_recorder.errors import CaptureError, ConnectError, TransportError
from stream_recorder.ports.transcriber import TranscriptEvent


SAMPLE_RATE = 16000
FRAME_DURATION_MS = 10
FRAME_SIZE = int(SAMPLE_RATE * FRAME_DURATION_MS / 1000)
BYTES_PER_FRAME = FRAME_SIZE * 2


def generate_silence(duration_ms: int = FRAME_DURATION_MS, sample_rate: int = SAMPLE_RATE) -> bytes:
    num_samples = int(sample_rate * duration_ms / 1000)
    return np.zeros(num_samples, dtype=np.int16).tobytes()


def generate_sine_wave(
    frequency: float = 440.0,
    duration_ms: int = FRAME_DURATION_MS,
    amplitude: float = 0.8,
    sample_rate: int = SAMPLE_RATE,
) -> bytes:
    num_samples = int(sample_rate * duration_ms / 1000)
    t = np.arange(num_samples) / sample_rate
    signal = np.sin(2 * np.pi * frequency * t) * amplitude
    return (signal * 32767).astype(np.int16).tobytes()


def split_into_frames(pcm_data: bytes, bytes_per_frame: int = BYTES_PER_FRAME) -> list[bytes]:
    return [pcm_data[i : i + bytes_per_frame] for i in range(0, len(pcm_data), bytes_per_frame)]


class FakeFrameSource:
    """Replays frames like a live microphone: after the last frame it stays
    open until stop() is called."""

    def __init__(
        self,
        frames: list[bytes] | None = None,
        fail_initialize: bool = False,
        fail_start: bool = False,
        calls: list[str] | None = None,
    ) -> None:
        self._frames = list(frames or [])
        self._fail_initialize = fail_initialize
        self._fail_start = fail_start
        self._initialized = False
        self._stopped = asyncio.Event()
        self.delivered = asyncio.Event()
        self.started = False
        self.initialize_calls = 0
        self.calls = calls if calls is not None else []

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        self.initialize_calls += 1
        self.calls.append("source.initialize")
        if self._fail_initialize:
            raise CaptureError("microphone unavailable")
        self._initialized = True

    async def start(self) -> None:
        self.calls.append("source.start")
        if self._fail_start:
            raise CaptureError("microphone busy")
        self._stopped.clear()
        self.delivered.clear()
        self.started = True

    async def stop(self) -> None:
        self.calls.append("source.stop")
        self.started = False
        self._stopped.set()

    async def read_frames(self) -> AsyncIterator[bytes]:
        for frame in self._frames:
            yield frame
            await asyncio.sleep(0)
        self.delivered.set()
        await self._stopped.wait()


class FakeTranscriber:
    def __init__(
        self,
        fail_connect: bool = False,
        fail_send: bool = False,
        send_delay: float = 0.0,
        greeting: str | None = None,
        calls: list[str] | None = None,
    ) -> None:
        self._fail_connect = fail_connect
        self._greeting = greeting
        self._fail_send = fail_send
        self._send_delay = send_delay
        self._events: Broadcast[TranscriptEvent] = Broadcast()
        self._connected = False
        self.last_final_transcript = ""
        self.credential: str | None = None
        self.sent: list[bytes] = []
        self.close_calls = 0
        self.calls = calls if calls is not None else []

    async def connect(self, credential: str) -> None:
        self.calls.append("client.connect")
        if self._fail_connect:
            raise ConnectError("credential rejected")
        self.credential = credential
        self._connected = True
        if self._greeting:
            self.emit(self._greeting)

    async def send_frame(self, frame: bytes) -> None:
        if not self._connected or self._fail_send:
            raise TransportError("not connected")
        if self._send_delay:
            await asyncio.sleep(self._send_delay)
        self.sent.append(frame)

    def transcripts(self) -> Subscription[TranscriptEvent]:
        return self._events.subscribe()

    def emit(self, text: str, is_final: bool = False) -> None:
        if is_final:
            self.last_final_transcript = text
        self._events.publish(TranscriptEvent(text=text, is_final=is_final))

    async def close(self) -> None:
        self.calls.append("client.close")
        self.close_calls += 1
        self._connected = False
        self._events.close()


class FakeCredentials:
    def __init__(self, credential: str = "test-key") -> None:
        self._credential = credential

    def get_credential(self) -> str:
        return self._credential


class LoggingSink(RawAppendSink):
    def __init__(self, calls: list[str]) -> None:
        super().__init__()
        self._calls = calls

    async def open(self, path: Path) -> None:
        self._calls.append("sink.open")
        await super().open(path)

    async def close(self) -> None:
        self._calls.append("sink.close")
        await super().close()


class FailingWavWriter(WavContainerWriter):
    def write(self, pcm, sample_rate, channels, path=None):
        from stream_recorder.errors import StorageError

        raise StorageError("disk full")


def make_controller(
    storage_dir: Path,
    source: FakeFrameSource,
    clients: list[FakeTranscriber] | FakeTranscriber,
    calls: list[str] | None = None,
    wav_writer: WavContainerWriter | None = None,
    **kwargs,
) -> SessionController:
    pending = list(clients) if isinstance(clients, list) else [clients]

    def client_factory() -> FakeTranscriber:
        return pending.pop(0) if len(pending) > 1 else pending[0]

    log = calls if calls is not None else []
    return SessionController(
        source=source,
        client_factory=client_factory,
        credentials=FakeCredentials(),
        sink_factory=lambda: LoggingSink(log),
        wav_writer=wav_writer or WavContainerWriter(storage_dir),
        storage_dir=storage_dir,
        sample_rate=kwargs.pop("sample_rate", SAMPLE_RATE),
        channels=kwargs.pop("channels", 1),
        **kwargs,
    )


@pytest.fixture
def calls():
    return []


@pytest.fixture
def three_frames():
    return [bytes([i]) * 320 for i in (1, 2, 3)]


@pytest.fixture
def speech_frames():
    return split_into_frames(generate_sine_wave(duration_ms=200))


@pytest.fixture
def fake_source(three_frames, calls):
    return FakeFrameSource(frames=three_frames, calls=calls)


@pytest.fixture
def fake_client(calls):
    return FakeTranscriber(calls=calls)


@pytest.fixture
def controller(tmp_path, fake_source, fake_client, calls):
    return make_controller(tmp_path, fake_source, fake_client, calls=calls)
