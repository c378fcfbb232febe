import asyncio
import logging
from collections.abc import AsyncIterator

import janus
import numpy as np
import sounddevice as sd

from stream_recorder.errors import CaptureError

logger = logging.getLogger(__name__)

INT16_MIN = np.iinfo(np.int16).min
INT16_MAX = np.iinfo(np.int16).max


class SounddeviceCapture:
    def __init__(
        self,
        device: str | int | None = None,
        sample_rate: int = 16000,
        channels: int = 1,
        frame_duration_ms: int = 20,
        gain: float = 1.0,
        queue_frames: int = 200,
    ) -> None:
        self._device = device
        self._sample_rate = sample_rate
        self._channels = channels
        self._frame_duration_ms = frame_duration_ms
        self._frame_size = int(sample_rate * frame_duration_ms / 1000)
        self._gain = gain
        self._queue_frames = queue_frames
        self._resolved_device: str | int | None = None
        self._initialized = False
        self._stream: sd.InputStream | None = None
        self._queue: janus.Queue[bytes] | None = None
        self._overflows = 0

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def channels(self) -> int:
        return self._channels

    @property
    def frame_size(self) -> int:
        return self._frame_size

    async def initialize(self) -> None:
        try:
            self._resolved_device = self._resolve_device()
            sd.check_input_settings(
                device=self._resolved_device,
                channels=self._channels,
                dtype="int16",
                samplerate=self._sample_rate,
            )
        except (sd.PortAudioError, ValueError) as exc:
            raise CaptureError(f"Audio input not usable: {exc}") from exc
        self._initialized = True
        logger.info(
            "Audio capture initialized (device=%s, rate=%d, channels=%d)",
            self._resolved_device, self._sample_rate, self._channels,
        )

    async def start(self) -> None:
        if not self._initialized:
            await self.initialize()
        self._queue = janus.Queue(maxsize=self._queue_frames)
        self._overflows = 0
        queue = self._queue

        def audio_callback(indata: np.ndarray, frames: int, time_info, status) -> None:
            if status:
                logger.warning("Audio capture status: %s", status)
            try:
                queue.sync_q.put_nowait(self._to_pcm(indata))
            except janus.SyncQueueFull:
                self._overflows += 1

        try:
            self._stream = sd.InputStream(
                device=self._resolved_device,
                samplerate=self._sample_rate,
                channels=self._channels,
                dtype="int16",
                blocksize=self._frame_size,
                callback=audio_callback,
            )
            self._stream.start()
        except sd.PortAudioError as exc:
            self._stream = None
            self._queue.close()
            self._queue = None
            raise CaptureError(f"Could not start audio capture: {exc}") from exc
        logger.info(
            "Audio capture started (device=%s, rate=%d, frame=%dms)",
            self._resolved_device, self._sample_rate, self._frame_duration_ms,
        )

    async def stop(self) -> None:
        stream = self._stream
        self._stream = None
        try:
            if stream:
                stream.stop()
                stream.close()
        except sd.PortAudioError as exc:
            raise CaptureError(f"Error stopping audio capture: {exc}") from exc
        finally:
            if self._queue:
                self._queue.close()
                await self._queue.wait_closed()
                self._queue = None
        if self._overflows:
            logger.warning("Audio capture dropped %d frames (consumer too slow)", self._overflows)
        logger.info("Audio capture stopped")

    async def read_frames(self) -> AsyncIterator[bytes]:
        queue = self._queue
        if not queue:
            return
        while True:
            try:
                frame = await asyncio.wait_for(queue.async_q.get(), timeout=1.0)
                yield frame
            except asyncio.TimeoutError:
                if self._stream is None:
                    break
                continue
            except janus.AsyncQueueShutDown:
                break

    def _to_pcm(self, indata: np.ndarray) -> bytes:
        if self._gain == 1.0:
            return indata.tobytes()
        amplified = indata.astype(np.float32) * self._gain
        return np.clip(amplified, INT16_MIN, INT16_MAX).astype(np.int16).tobytes()

    def _resolve_device(self) -> str | int | None:
        if self._device is None or self._device == "":
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
        raise ValueError(f"No input device matching '{self._device}'")


def list_input_devices() -> list[tuple[int, str, int, float]]:
    devices = []
    for i, dev in enumerate(sd.query_devices()):
        if dev["max_input_channels"] > 0:
            devices.append((i, dev["name"], dev["max_input_channels"], dev["default_samplerate"]))
    return devices
