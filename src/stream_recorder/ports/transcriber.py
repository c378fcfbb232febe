from dataclasses import dataclass
from typing import Protocol, AsyncIterable


@dataclass(frozen=True)
class TranscriptEvent:
    text: str
    is_final: bool


class StreamingTranscriberPort(Protocol):
    @property
    def last_final_transcript(self) -> str: ...
    async def connect(self, credential: str) -> None: ...
    async def send_frame(self, frame: bytes) -> None: ...
    def transcripts(self) -> AsyncIterable[TranscriptEvent]: ...
    async def close(self) -> None: ...
