import asyncio
import logging
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from stream_recorder.domain.broadcast import Broadcast, Subscription
from stream_recorder.domain.messages import parse_server_message
from stream_recorder.domain.state import ConnectionState, validate_connection_transition
from stream_recorder.errors import ConnectError, TransportError
from stream_recorder.ports.transcriber import TranscriptEvent

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT_URL = "wss://api.assemblyai.com/v2/realtime"


def build_endpoint_url(endpoint_url: str, sample_rate: int) -> str:
    parts = urlsplit(endpoint_url)
    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key != "sample_rate"
    ]
    query.append(("sample_rate", str(sample_rate)))
    return urlunsplit(parts._replace(query=urlencode(query)))


class WebSocketTranscriber:
    def __init__(
        self,
        endpoint_url: str = DEFAULT_ENDPOINT_URL,
        sample_rate: int = 16000,
        open_timeout: float = 10.0,
        close_timeout: float = 5.0,
    ) -> None:
        self._endpoint_url = endpoint_url
        self._sample_rate = sample_rate
        self._open_timeout = open_timeout
        self._close_timeout = close_timeout
        self._connection = None
        self._listener_task: asyncio.Task | None = None
        self._state = ConnectionState.DISCONNECTED
        self._events: Broadcast[TranscriptEvent] = Broadcast()
        self._last_final_transcript = ""
        self._transport_error: TransportError | None = None
        self._messages_received = 0
        self._close_requested = False

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def url(self) -> str:
        return build_endpoint_url(self._endpoint_url, self._sample_rate)

    @property
    def last_final_transcript(self) -> str:
        return self._last_final_transcript

    @property
    def transport_error(self) -> TransportError | None:
        return self._transport_error

    @property
    def messages_received(self) -> int:
        return self._messages_received

    def _transition_to(self, target: ConnectionState) -> None:
        validate_connection_transition(self._state, target)
        logger.debug("Connection: %s -> %s", self._state.name, target.name)
        self._state = target

    async def connect(self, credential: str) -> None:
        self._transition_to(ConnectionState.CONNECTING)
        url = self.url
        logger.info("Connecting to %s", url)
        try:
            self._connection = await websockets.connect(
                url,
                additional_headers={"Authorization": credential},
                open_timeout=self._open_timeout,
                close_timeout=self._close_timeout,
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            self._transition_to(ConnectionState.FAILED)
            self._events.close()
            raise ConnectError(f"Could not connect to {url}: {exc}") from exc

        self._transition_to(ConnectionState.CONNECTED)
        self._listener_task = asyncio.create_task(self._listen())
        logger.info("Transcription stream connected")

    async def send_frame(self, frame: bytes) -> None:
        connection = self._connection
        if connection is None or self._state != ConnectionState.CONNECTED:
            raise TransportError(f"Cannot send audio while connection is {self._state.name}")
        try:
            await connection.send(frame)
        except ConnectionClosed as exc:
            raise TransportError(f"Connection closed while sending: {exc}") from exc

    def transcripts(self) -> Subscription[TranscriptEvent]:
        return self._events.subscribe(name="transcripts")

    async def close(self) -> None:
        if self._close_requested:
            return
        self._close_requested = True

        if self._state == ConnectionState.CONNECTED:
            self._transition_to(ConnectionState.CLOSING)

        connection = self._connection
        if connection is not None:
            try:
                await asyncio.wait_for(connection.close(), timeout=self._close_timeout)
            except (asyncio.TimeoutError, OSError, WebSocketException) as exc:
                logger.warning("Error closing transcription stream: %s", exc)

        if self._listener_task is not None and not self._listener_task.done():
            try:
                await asyncio.wait_for(self._listener_task, timeout=self._close_timeout)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                logger.warning("Transcript listener did not stop in time")
        self._listener_task = None
        self._connection = None

        if self._state in (ConnectionState.DISCONNECTED, ConnectionState.CLOSING):
            self._transition_to(ConnectionState.CLOSED)
        self._events.close()
        logger.info(
            "Transcription stream closed (%d messages received)", self._messages_received,
        )

    async def _listen(self) -> None:
        try:
            async for message in self._connection:
                try:
                    self._handle_message(message)
                except Exception:
                    logger.exception("Could not handle server message, publishing it as raw text")
                    self._publish_raw(message)
            logger.info("Transcription stream closed by server")
            if self._state == ConnectionState.CONNECTED:
                self._transition_to(ConnectionState.CLOSED)
        except ConnectionClosed as exc:
            self._record_transport_error(exc)
        except WebSocketException as exc:
            self._record_transport_error(exc)
        finally:
            self._events.close()

    def _handle_message(self, message: str | bytes) -> None:
        self._messages_received += 1
        parsed = parse_server_message(message)

        final_text = parsed.final_transcript
        if final_text is not None:
            self._last_final_transcript = final_text
            logger.info("Final transcript: %s", final_text)

        event = parsed.to_event()
        if event is None:
            logger.debug("Server message without text (%s)", parsed.kind.name)
            return
        if not event.is_final:
            logger.debug("Transcript (partial): %s", event.text)
        self._events.publish(event)

    def _publish_raw(self, message: str | bytes) -> None:
        if isinstance(message, (bytes, bytearray)):
            message = bytes(message).decode("utf-8", errors="replace")
        self._events.publish(TranscriptEvent(text=message, is_final=False))

    def _record_transport_error(self, exc: Exception) -> None:
        self._transport_error = TransportError(str(exc))
        logger.warning("Transcription stream error: %s", exc)
        if self._state in (ConnectionState.CONNECTED, ConnectionState.CLOSING):
            self._transition_to(ConnectionState.FAILED)
