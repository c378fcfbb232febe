import asyncio
import logging
from pathlib import Path
from typing import BinaryIO

from stream_recorder.errors import StorageError

logger = logging.getLogger(__name__)


class RawAppendSink:
    def __init__(self) -> None:
        self._file: BinaryIO | None = None
        self._path: Path | None = None
        self._bytes_written = 0

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def is_open(self) -> bool:
        return self._file is not None

    @property
    def bytes_written(self) -> int:
        return self._bytes_written

    async def open(self, path: str | Path) -> None:
        if self._file is not None:
            raise StorageError(f"Raw sink already open at {self._path}")
        target = Path(path)
        try:
            self._file = await asyncio.to_thread(_open_for_append, target)
        except OSError as exc:
            raise StorageError(f"Cannot open raw file {target}: {exc}") from exc
        self._path = target
        self._bytes_written = 0
        logger.info("Raw sink opened at %s", target)

    async def append(self, frame: bytes) -> None:
        file = self._file
        if file is None:
            raise StorageError("Raw sink is not open")
        try:
            await asyncio.to_thread(file.write, frame)
        except (OSError, ValueError) as exc:
            raise StorageError(f"Cannot append to raw file {self._path}: {exc}") from exc
        self._bytes_written += len(frame)

    async def close(self) -> None:
        file = self._file
        if file is None:
            return
        self._file = None
        try:
            await asyncio.to_thread(file.close)
        except OSError:
            logger.warning("Error closing raw file %s", self._path, exc_info=True)
            return
        logger.info("Raw sink closed (%d bytes at %s)", self._bytes_written, self._path)


def _open_for_append(path: Path) -> BinaryIO:
    path.parent.mkdir(parents=True, exist_ok=True)
    return open(path, "ab")
