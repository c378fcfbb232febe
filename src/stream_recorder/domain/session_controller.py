import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path

from stream_recorder.domain.broadcast import Broadcast, Subscription
from stream_recorder.domain.session import RecordingOutcome, Session
from stream_recorder.domain.state import (
    SESSION_TERMINAL_STATES,
    InvalidTransitionError,
    SessionState,
    validate_transition,
)
from stream_recorder.domain.wav import WavContainerWriter
from stream_recorder.errors import CaptureError, StorageError, TransportError
from stream_recorder.ports.audio import FrameSourcePort
from stream_recorder.ports.credentials import CredentialProvider
from stream_recorder.ports.storage import RawSinkPort
from stream_recorder.ports.transcriber import StreamingTranscriberPort, TranscriptEvent

logger = logging.getLogger(__name__)

DRAIN_TIMEOUT_SECONDS = 5.0


class SessionController:
    """Runs one recording session at a time.

    Every captured frame is published once and consumed by two independent
    subscribers: one appends to the raw file, one streams to the
    transcription service. The socket subscriber is bounded and drops its
    oldest frames when the connection falls behind, so capture never waits
    on the network.
    """

    def __init__(
        self,
        source: FrameSourcePort,
        client_factory: Callable[[], StreamingTranscriberPort],
        credentials: CredentialProvider,
        sink_factory: Callable[[], RawSinkPort],
        wav_writer: WavContainerWriter,
        storage_dir: str | Path,
        sample_rate: int = 16000,
        channels: int = 1,
        send_queue_frames: int = 250,
        drain_timeout_seconds: float = DRAIN_TIMEOUT_SECONDS,
    ) -> None:
        self._source = source
        self._client_factory = client_factory
        self._credentials = credentials
        self._sink_factory = sink_factory
        self._wav_writer = wav_writer
        self._storage_dir = Path(storage_dir)
        self._sample_rate = sample_rate
        self._channels = channels
        self._send_queue_frames = send_queue_frames
        self._drain_timeout_seconds = drain_timeout_seconds

        self._state = SessionState.IDLE
        self._session: Session | None = None
        self._last_outcome = RecordingOutcome.NOT_STARTED
        self._client: StreamingTranscriberPort | None = None
        self._sink: RawSinkPort | None = None
        self._frames: Broadcast[bytes] | None = None
        self._socket_feed: Subscription[bytes] | None = None
        self._pump_task: asyncio.Task | None = None
        self._file_task: asyncio.Task | None = None
        self._socket_task: asyncio.Task | None = None
        self._relay_task: asyncio.Task | None = None
        self._events: Broadcast[TranscriptEvent] = Broadcast()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def last_outcome(self) -> RecordingOutcome:
        return self._last_outcome

    @property
    def last_final_transcript(self) -> str:
        if self._client is not None and self._state == SessionState.STREAMING:
            return self._client.last_final_transcript
        if self._session is not None:
            return self._session.last_final_transcript
        return ""

    def transcripts(self) -> Subscription[TranscriptEvent]:
        """Events of the running session, or of the next one if none is running.

        The feed ends when that session stops or fails to start.
        """
        return self._events.subscribe(name="transcripts")

    def _transition_to(self, target: SessionState) -> None:
        validate_transition(self._state, target)
        logger.info("State: %s -> %s", self._state.name, target.name)
        self._state = target
        if self._session is not None:
            self._session.state = target

    async def start(self) -> Session:
        if self._state not in SESSION_TERMINAL_STATES:
            raise InvalidTransitionError(f"A session is already {self._state.name}")

        session = Session.begin(self._sample_rate, self._channels)
        self._session = session
        self._client = None
        self._transition_to(SessionState.INITIALIZING)
        logger.info(
            "Session %s starting (%d Hz, %d ch)",
            session.session_id, session.sample_rate, session.channels,
        )

        try:
            if not self._source.initialized:
                await self._source.initialize()

            session.raw_path = self._storage_dir / f"pcm_{session.session_id}.raw"
            self._sink = self._sink_factory()
            await self._sink.open(session.raw_path)

            self._client = self._client_factory()
            self._relay_task = asyncio.create_task(
                self._relay_transcripts(self._client.transcripts(), self._events),
            )
            await self._client.connect(self._credentials.get_credential())

            await self._source.start()
        except Exception as exc:
            logger.error("Session %s failed to start: %s", session.session_id, exc)
            await self._abort_start(session)
            raise

        self._frames = Broadcast()
        file_feed = self._frames.subscribe(name="raw-file")
        self._socket_feed = self._frames.subscribe(maxsize=self._send_queue_frames, name="socket")
        self._file_task = asyncio.create_task(self._forward_to_file(file_feed, session))
        self._socket_task = asyncio.create_task(self._forward_to_socket(self._socket_feed, session))
        self._pump_task = asyncio.create_task(self._pump_frames(session))

        self._transition_to(SessionState.STREAMING)
        return session

    async def stop(self) -> Path | None:
        if self._state != SessionState.STREAMING:
            logger.info("Stop requested while %s, nothing to finalize", self._state.name)
            return None

        session = self._session
        self._transition_to(SessionState.STOPPING)
        try:
            try:
                await self._teardown(session)
            except Exception:
                logger.exception("Unexpected error while stopping session %s", session.session_id)
            return await self._finalize(session)
        finally:
            session.raw_path = None
            self._end_transcripts()
            self._release()

    async def _abort_start(self, session: Session) -> None:
        if self._sink is not None:
            await self._quietly(self._sink.close(), "raw file")
        if session.raw_path is not None:
            try:
                session.raw_path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Could not remove raw file %s: %s", session.raw_path, exc)
            session.raw_path = None
        if self._client is not None:
            await self._quietly(self._client.close(), "transcription stream")
        await self._drain(self._relay_task, "transcript relay")
        self._end_transcripts()
        self._release()
        self._transition_to(SessionState.FAILED)
        self._last_outcome = RecordingOutcome.FAILED

    async def _teardown(self, session: Session) -> None:
        # Frames must stop flowing before either sink is closed
        await self._cancel(self._pump_task)
        try:
            await self._source.stop()
        except CaptureError as exc:
            logger.warning("Error stopping audio capture: %s", exc)
        self._frames.close()

        await self._drain(self._file_task, "raw file writer")
        await self._quietly(self._sink.close(), "raw file")

        await self._drain(self._socket_task, "audio sender")
        session.stats.frames_dropped = self._socket_feed.dropped
        await self._quietly(self._client.close(), "transcription stream")
        session.last_final_transcript = self._client.last_final_transcript
        await self._drain(self._relay_task, "transcript relay")

        stats = session.stats
        logger.info(
            "Session %s stopped: %d frames captured, %d bytes written, %d sent, %d dropped",
            session.session_id, stats.frames_captured, stats.bytes_written,
            stats.frames_sent, stats.frames_dropped,
        )

    async def _finalize(self, session: Session) -> Path | None:
        raw_path = session.raw_path
        pcm = None
        if raw_path is not None:
            try:
                pcm = await asyncio.to_thread(raw_path.read_bytes)
            except FileNotFoundError:
                pass
            except OSError as exc:
                logger.warning("Raw audio at %s is unreadable, kept in place: %s", raw_path, exc)
        if pcm is None:
            logger.warning("No raw audio for session %s, no recording produced", session.session_id)
            self._transition_to(SessionState.FINALIZED)
            self._last_outcome = RecordingOutcome.NO_ARTIFACT
            return None

        try:
            target = self._wav_writer.output_dir / f"recording_{session.session_id}.wav"
            container = await asyncio.to_thread(
                self._wav_writer.write, pcm, session.sample_rate, session.channels, target,
            )
        except Exception:
            logger.exception(
                "Finalizing session %s failed, raw audio kept at %s", session.session_id, raw_path,
            )
            self._transition_to(SessionState.FAILED)
            self._last_outcome = RecordingOutcome.FAILED
            return None

        try:
            await asyncio.to_thread(raw_path.unlink)
        except OSError as exc:
            logger.warning("Could not delete raw file %s: %s", raw_path, exc)

        self._transition_to(SessionState.FINALIZED)
        self._last_outcome = RecordingOutcome.FINALIZED
        logger.info("Recording finalized: %s (%.1fs)", container, session.duration_seconds)
        return container

    async def _pump_frames(self, session: Session) -> None:
        try:
            async for frame in self._source.read_frames():
                if not frame:
                    continue
                session.stats.frames_captured += 1
                self._frames.publish(bytes(frame))
        except CaptureError as exc:
            logger.error("Audio capture failed: %s", exc)
            return
        logger.info("Audio source ended")

    async def _forward_to_file(self, feed: Subscription[bytes], session: Session) -> None:
        async for frame in feed:
            try:
                await self._sink.append(frame)
            except StorageError as exc:
                session.stats.write_failures += 1
                logger.warning("Frame not written to raw file: %s", exc)
                continue
            session.stats.bytes_written += len(frame)

    async def _forward_to_socket(self, feed: Subscription[bytes], session: Session) -> None:
        async for frame in feed:
            try:
                await self._client.send_frame(frame)
            except TransportError as exc:
                session.stats.send_failures += 1
                failures = session.stats.send_failures
                if failures == 1 or failures % 100 == 0:
                    logger.warning("Frame not sent (%d failures so far): %s", failures, exc)
                continue
            session.stats.frames_sent += 1

    async def _relay_transcripts(
        self,
        feed: Subscription[TranscriptEvent],
        events: Broadcast[TranscriptEvent],
    ) -> None:
        async for event in feed:
            events.publish(event)

    def _end_transcripts(self) -> None:
        # Subscribers taken from now on wait for the next session
        self._events.close()
        self._events = Broadcast()

    async def _drain(self, task: asyncio.Task | None, what: str) -> None:
        if task is None:
            return
        try:
            await asyncio.wait_for(task, timeout=self._drain_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("%s did not drain within %.1fs", what, self._drain_timeout_seconds)
        except Exception:
            logger.exception("%s failed", what)

    async def _cancel(self, task: asyncio.Task | None) -> None:
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Frame pump failed")

    async def _quietly(self, closing: Awaitable[None], what: str) -> None:
        try:
            await closing
        except Exception as exc:
            logger.warning("Error closing %s: %s", what, exc)

    def _release(self) -> None:
        self._sink = None
        self._frames = None
        self._socket_feed = None
        self._pump_task = None
        self._file_task = None
        self._socket_task = None
        self._relay_task = None
