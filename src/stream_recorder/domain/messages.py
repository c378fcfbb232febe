"""Classification of inbound transcription server messages.

The server does not commit to one message shape, so each payload is matched
against a fixed, ordered list of shapes and the first match wins:

1. ``{"text": ...}``
2. ``{"message": ...}``
3. ``{"payload": {"text": ...}}``
4. ``{"type": "final", ...}``
5. any other object, serialized verbatim

Frames that are not a JSON object at all are kept as raw text.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum, auto

from stream_recorder.errors import DecodeError
from stream_recorder.ports.transcriber import TranscriptEvent

logger = logging.getLogger(__name__)

FINAL_TYPE_VALUE = "final"
FINAL_FLAG_KEY = "is_final"


class MessageKind(Enum):
    TEXT_FIELD = auto()
    MESSAGE_FIELD = auto()
    NESTED_PAYLOAD_TEXT = auto()
    FINAL_TYPE_MARKER = auto()
    UNSTRUCTURED = auto()
    RAW = auto()


TEXT_SHAPES = frozenset({
    MessageKind.TEXT_FIELD,
    MessageKind.MESSAGE_FIELD,
    MessageKind.NESTED_PAYLOAD_TEXT,
})


@dataclass(frozen=True)
class ServerMessage:
    kind: MessageKind
    text: str | None
    final_flag: bool = False

    @property
    def is_final(self) -> bool:
        return self.final_flag or self.kind == MessageKind.FINAL_TYPE_MARKER

    @property
    def final_transcript(self) -> str | None:
        """Text that should replace the last final transcript, if any.

        Only an explicit ``is_final: true`` on a recognized text shape counts;
        a final marker without usable text leaves the previous value alone.
        """
        if self.final_flag and self.kind in TEXT_SHAPES and self.text:
            return self.text
        return None

    def to_event(self) -> TranscriptEvent | None:
        if self.text is None:
            return None
        return TranscriptEvent(text=self.text, is_final=self.is_final)


def decode_payload(raw: str) -> dict:
    try:
        value = json.loads(raw)
    except (ValueError, RecursionError) as exc:
        raise DecodeError(f"Not valid JSON: {exc}") from exc
    if not isinstance(value, dict):
        raise DecodeError(f"Expected a JSON object, got {type(value).__name__}")
    return value


def classify_payload(payload: dict) -> ServerMessage:
    final_flag = payload.get(FINAL_FLAG_KEY) is True

    if "text" in payload:
        return ServerMessage(MessageKind.TEXT_FIELD, _as_text(payload["text"]), final_flag)

    if "message" in payload:
        return ServerMessage(MessageKind.MESSAGE_FIELD, _as_text(payload["message"]), final_flag)

    nested = payload.get("payload")
    if isinstance(nested, dict) and "text" in nested:
        return ServerMessage(MessageKind.NESTED_PAYLOAD_TEXT, _as_text(nested["text"]), final_flag)

    if payload.get("type") == FINAL_TYPE_VALUE:
        return ServerMessage(MessageKind.FINAL_TYPE_MARKER, _serialize(payload), final_flag)

    return ServerMessage(MessageKind.UNSTRUCTURED, _serialize(payload), final_flag)


def parse_server_message(raw: str | bytes) -> ServerMessage:
    if isinstance(raw, (bytes, bytearray)):
        raw = bytes(raw).decode("utf-8", errors="replace")
    try:
        payload = decode_payload(raw)
    except DecodeError as exc:
        logger.debug("Unstructured server message kept as raw text: %s", exc)
        return ServerMessage(MessageKind.RAW, raw)
    return classify_payload(payload)


def _as_text(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def _serialize(payload: dict) -> str:
    return json.dumps(payload, ensure_ascii=False)
