from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from time import time

from stream_recorder.domain.state import SessionState


class RecordingOutcome(Enum):
    NOT_STARTED = auto()
    FINALIZED = auto()
    NO_ARTIFACT = auto()
    FAILED = auto()


@dataclass
class SessionStats:
    frames_captured: int = 0
    bytes_written: int = 0
    frames_sent: int = 0
    frames_dropped: int = 0
    write_failures: int = 0
    send_failures: int = 0


@dataclass
class Session:
    session_id: str
    sample_rate: int
    channels: int
    raw_path: Path | None = None
    state: SessionState = SessionState.INITIALIZING
    last_final_transcript: str = ""
    started_at: float = field(default_factory=time)
    stats: SessionStats = field(default_factory=SessionStats)

    @classmethod
    def begin(cls, sample_rate: int, channels: int) -> "Session":
        started_at = time()
        return cls(
            session_id=str(int(started_at * 1000)),
            sample_rate=sample_rate,
            channels=channels,
            started_at=started_at,
        )

    @property
    def duration_seconds(self) -> float:
        bytes_per_second = self.sample_rate * self.channels * 2
        if bytes_per_second <= 0:
            return 0.0
        return self.stats.bytes_written / bytes_per_second
