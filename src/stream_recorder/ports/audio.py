from typing import Protocol, AsyncIterator


class FrameSourcePort(Protocol):
    @property
    def initialized(self) -> bool: ...
    async def initialize(self) -> None: ...
    async def start(self) -> None: ...
    async def stop(self) -> None: ...
    def read_frames(self) -> AsyncIterator[bytes]: ...
