import logging
import os
import struct
import tempfile
import time
from pathlib import Path

from stream_recorder.errors import StorageError

logger = logging.getLogger(__name__)

HEADER_SIZE = 44
BITS_PER_SAMPLE = 16
BYTES_PER_SAMPLE = BITS_PER_SAMPLE // 8
PCM_FORMAT = 1
FMT_CHUNK_SIZE = 16
MAX_CHANNELS = 0xFFFF
MAX_DATA_SIZE = 0xFFFFFFFF - 36
FILE_MODE = 0o666

# RIFF header, "fmt " chunk, "data" chunk header; all little-endian
_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")


def build_header(data_size: int, sample_rate: int, channels: int) -> bytes:
    if sample_rate <= 0:
        raise ValueError(f"Sample rate must be positive, got {sample_rate}")
    if not 1 <= channels <= MAX_CHANNELS:
        raise ValueError(f"Channel count must be between 1 and {MAX_CHANNELS}, got {channels}")
    if not 0 <= data_size <= MAX_DATA_SIZE:
        raise ValueError(f"Data size {data_size} does not fit a WAV container")

    block_align = channels * BYTES_PER_SAMPLE
    byte_rate = sample_rate * block_align
    return _HEADER.pack(
        b"RIFF",
        36 + data_size,
        b"WAVE",
        b"fmt ",
        FMT_CHUNK_SIZE,
        PCM_FORMAT,
        channels,
        sample_rate,
        byte_rate,
        block_align,
        BITS_PER_SAMPLE,
        b"data",
        data_size,
    )


class WavContainerWriter:
    """Writes PCM16 samples into a new WAV file.

    The file is written under a temporary name and renamed into place, so a
    failed write never leaves a partial container behind.
    """

    def __init__(self, output_dir: str | Path) -> None:
        self._output_dir = Path(output_dir)

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    def default_path(self) -> Path:
        return self._output_dir / f"recording_{int(time.time() * 1000)}.wav"

    def write(
        self,
        pcm: bytes,
        sample_rate: int,
        channels: int,
        path: str | Path | None = None,
    ) -> Path:
        header = build_header(len(pcm), sample_rate, channels)
        target = Path(path) if path is not None else self.default_path()

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(
                prefix=f".{target.name}.", suffix=".part", dir=target.parent,
            )
            try:
                with os.fdopen(fd, "wb") as out:
                    os.fchmod(out.fileno(), FILE_MODE & ~_current_umask())
                    out.write(header)
                    out.write(pcm)
                    out.flush()
                    os.fsync(out.fileno())
                os.replace(temp_name, target)
            except BaseException:
                Path(temp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StorageError(f"Could not write container {target}: {exc}") from exc

        logger.info(
            "Container written: %s (%d Hz, %d ch, %d data bytes)",
            target, sample_rate, channels, len(pcm),
        )
        return target


def _current_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask
