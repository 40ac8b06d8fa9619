from collections.abc import AsyncIterator
from typing import Protocol

import numpy as np

from live_transcribe.domain.state import Capability


class AudioSourcePort(Protocol):
    @property
    def sample_rate(self) -> int: ...
    async def start(self) -> None: ...
    async def stop(self) -> None: ...
    def read_blocks(self) -> AsyncIterator[np.ndarray]: ...


class EncoderPort(Protocol):
    async def start(self, sample_rate: int) -> None: ...
    async def write(self, block: np.ndarray) -> None: ...
    async def finish(self) -> None: ...
    def chunks(self) -> AsyncIterator[bytes]: ...
    async def close(self) -> None: ...


class FrameCapturePort(Protocol):
    mode: Capability

    async def start(self) -> None: ...
    def frames(self) -> AsyncIterator[bytes]: ...
    async def stop(self) -> None: ...


class FrameSinkPort(Protocol):
    async def send_frame(self, frame: bytes) -> bool: ...
    async def send_end_of_stream(self) -> bool: ...
