from pathlib import Path
from typing import Protocol


class RawSinkPort(Protocol):
    async def open(self, path: Path) -> None: ...
    async def append(self, frame: bytes) -> None: ...
    async def close(self) -> None: ...
