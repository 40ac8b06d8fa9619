import asyncio
import json
from collections.abc import AsyncIterator

import numpy as np
import pytest

from live_transcribe.domain.capture import CapturePipeline
from live_transcribe.domain.errors import CaptureError, TransportError
from live_transcribe.domain.session import StreamingSession
from live_transcribe.domain.state import Capability
from live_transcribe.ports.transport import NORMAL_CLOSURE

NATIVE_RATE = 48000
TARGET_RATE = 16000
WS_URI = "ws://localhost:8000/asr"

_CLOSED = object()


def generate_sine_block(
    frequency: float = 440.0,
    duration_ms: int = 20,
    amplitude: float = 0.5,
    sample_rate: int = NATIVE_RATE,
) -> np.ndarray:
    num_samples = int(sample_rate * duration_ms / 1000)
    t = np.arange(num_samples) / sample_rate
    return (np.sin(2 * np.pi * frequency * t) * amplitude).astype(np.float32)


def generate_silence_block(duration_ms: int = 20, sample_rate: int = NATIVE_RATE) -> np.ndarray:
    return np.zeros(int(sample_rate * duration_ms / 1000), dtype=np.float32)


class FakeSocket:
    def __init__(self) -> None:
        self.sent: list[bytes | str] = []
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._close_code: int | None = None
        self.closed = False

    @property
    def close_code(self) -> int | None:
        return self._close_code

    async def send(self, data: bytes | str) -> None:
        if self.closed:
            raise TransportError("socket is closed")
        self.sent.append(data)

    async def messages(self) -> AsyncIterator[bytes | str]:
        while True:
            item = await self._inbox.get()
            if item is _CLOSED:
                return
            yield item

    async def close(self, code: int = NORMAL_CLOSURE) -> None:
        self.drop(code)

    def feed(self, message: dict | str | bytes) -> None:
        if isinstance(message, dict):
            message = json.dumps(message)
        self._inbox.put_nowait(message)

    def feed_config(self, use_audio_worklet: bool = False) -> None:
        self.feed({"type": "config", "useAudioWorklet": use_audio_worklet})

    def drop(self, code: int = 1006) -> None:
        if self.closed:
            return
        self.closed = True
        self._close_code = code
        self._inbox.put_nowait(_CLOSED)


class FakeConnector:
    """Hands out the queued sockets in order; an exception entry fails that attempt."""

    def __init__(self, outcomes: list | None = None, always_fail: bool = False) -> None:
        self._outcomes = list(outcomes or [])
        self._always_fail = always_fail
        self.attempts = 0
        self.uris: list[str] = []

    async def __call__(self, uri: str) -> FakeSocket:
        self.attempts += 1
        self.uris.append(uri)
        if self._always_fail or not self._outcomes:
            raise TransportError("connection refused")
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeAudioSource:
    def __init__(
        self,
        blocks: list[np.ndarray] | None = None,
        sample_rate: int = NATIVE_RATE,
        fail_start: bool = False,
    ) -> None:
        self._blocks = list(blocks or [])
        self._sample_rate = sample_rate
        self._fail_start = fail_start
        self._stopped = asyncio.Event()
        self.started = False
        self.stop_calls = 0

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    async def start(self) -> None:
        if self._fail_start:
            raise CaptureError("device unavailable")
        self.started = True

    async def stop(self) -> None:
        self.stop_calls += 1
        self.started = False
        self._stopped.set()

    async def read_blocks(self) -> AsyncIterator[np.ndarray]:
        for block in self._blocks:
            yield block
        await self._stopped.wait()


class FakeEncoder:
    def __init__(self, fail_start: bool = False) -> None:
        self._fail_start = fail_start
        self._chunks: asyncio.Queue = asyncio.Queue()
        self.sample_rate: int | None = None
        self.written_blocks = 0
        self.finished = False
        self.closed = False

    async def start(self, sample_rate: int) -> None:
        if self._fail_start:
            raise CaptureError("ffmpeg not found")
        self.sample_rate = sample_rate

    async def write(self, block: np.ndarray) -> None:
        self.written_blocks += 1
        self._chunks.put_nowait(f"chunk-{self.written_blocks}".encode())

    async def finish(self) -> None:
        if not self.finished:
            self.finished = True
            self._chunks.put_nowait(None)

    async def chunks(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._chunks.get()
            if chunk is None:
                return
            yield chunk

    async def close(self) -> None:
        await self.finish()
        self.closed = True


class RecordingSink:
    def __init__(self, accept: bool = True) -> None:
        self.frames: list[bytes] = []
        self.end_of_stream_count = 0
        self._accept = accept

    async def send_frame(self, frame: bytes) -> bool:
        if not self._accept:
            return False
        self.frames.append(frame)
        return True

    async def send_end_of_stream(self) -> bool:
        self.end_of_stream_count += 1
        return True


async def wait_until(predicate, timeout: float = 1.0) -> None:
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout)


async def open_session(
    session: StreamingSession,
    socket: FakeSocket,
    use_audio_worklet: bool = False,
) -> Capability:
    await session.connect()
    socket.feed_config(use_audio_worklet)
    return await session.wait_ready(timeout=1.0)


@pytest.fixture
def fake_socket():
    return FakeSocket()


@pytest.fixture
def recording_sink():
    return RecordingSink()


@pytest.fixture
def make_session():
    def factory(connector, retries: int = 5, retry_delay: float = 0.01) -> StreamingSession:
        return StreamingSession(WS_URI, connector, retries=retries, retry_delay=retry_delay)

    return factory


@pytest.fixture
def capture_factories():
    """Raw and container captures backed by fakes; the created objects are recorded."""
    from live_transcribe.domain.capture import ContainerCapture, RawFrameCapture

    state = {
        "raw_fail": False,
        "container_fail": False,
        "blocks": [generate_sine_block() for _ in range(3)],
        "raw": [],
        "container": [],
    }

    def raw_factory() -> RawFrameCapture:
        source = FakeAudioSource(blocks=state["blocks"], fail_start=state["raw_fail"])
        state["raw"].append(source)
        return RawFrameCapture(source, target_rate=TARGET_RATE)

    def container_factory() -> ContainerCapture:
        source = FakeAudioSource(blocks=state["blocks"])
        encoder = FakeEncoder(fail_start=state["container_fail"])
        state["container"].append((source, encoder))
        return ContainerCapture(source, encoder)

    state["raw_factory"] = raw_factory
    state["container_factory"] = container_factory
    return state


@pytest.fixture
def make_pipeline(capture_factories):
    def factory(sink) -> CapturePipeline:
        return CapturePipeline(
            sink=sink,
            raw_factory=capture_factories["raw_factory"],
            container_factory=capture_factories["container_factory"],
            drain_timeout=1.0,
        )

    return factory
