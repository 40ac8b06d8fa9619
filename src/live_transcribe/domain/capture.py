import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Callable

from live_transcribe.domain.errors import CaptureError
from live_transcribe.domain.resampler import TARGET_SAMPLE_RATE, encode_block
from live_transcribe.domain.state import Capability
from live_transcribe.ports.audio import (
    AudioSourcePort,
    EncoderPort,
    FrameCapturePort,
    FrameSinkPort,
)

logger = logging.getLogger(__name__)

DRAIN_TIMEOUT_SECONDS = 3.0


class RawFrameCapture:
    mode = Capability.RAW_FRAMES

    def __init__(self, source: AudioSourcePort, target_rate: int = TARGET_SAMPLE_RATE) -> None:
        self._source = source
        self._target_rate = target_rate

    async def start(self) -> None:
        await self._source.start()

    async def frames(self) -> AsyncIterator[bytes]:
        async for block in self._source.read_blocks():
            frame = encode_block(block, self._source.sample_rate, self._target_rate)
            if frame:
                yield frame

    async def stop(self) -> None:
        await self._source.stop()


class ContainerCapture:
    mode = Capability.CONTAINER_ENCODING

    def __init__(self, source: AudioSourcePort, encoder: EncoderPort) -> None:
        self._source = source
        self._encoder = encoder

    async def start(self) -> None:
        await self._source.start()
        await self._encoder.start(self._source.sample_rate)

    async def frames(self) -> AsyncIterator[bytes]:
        feeder = asyncio.create_task(self._feed())
        try:
            async for chunk in self._encoder.chunks():
                if chunk:
                    yield chunk
            await feeder
        finally:
            if not feeder.done():
                feeder.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await feeder

    async def stop(self) -> None:
        try:
            await self._source.stop()
        finally:
            await self._encoder.close()

    async def _feed(self) -> None:
        try:
            async for block in self._source.read_blocks():
                await self._encoder.write(block)
        finally:
            await self._encoder.finish()


class CapturePipeline:
    """
    Owns the active capture for one recording activation.

    The capture mode comes from the server's capability flag. A raw-frame
    capture that cannot be started is torn down completely before the
    container-encoding capture is tried. Frames are forwarded to the sink by a
    single pump task, so they leave in capture order.
    """

    def __init__(
        self,
        sink: FrameSinkPort,
        raw_factory: Callable[[], FrameCapturePort],
        container_factory: Callable[[], FrameCapturePort],
        drain_timeout: float = DRAIN_TIMEOUT_SECONDS,
    ) -> None:
        self._sink = sink
        self._raw_factory = raw_factory
        self._container_factory = container_factory
        self._drain_timeout = drain_timeout
        self._capture: FrameCapturePort | None = None
        self._pump_task: asyncio.Task | None = None
        self._frames_sent = 0
        self.on_failure: Callable[[Exception], None] | None = None

    @property
    def active(self) -> bool:
        return self._capture is not None

    @property
    def mode(self) -> Capability | None:
        return self._capture.mode if self._capture else None

    @property
    def frames_sent(self) -> int:
        return self._frames_sent

    async def start(self, capability: Capability) -> Capability:
        if self._capture is not None:
            raise CaptureError("Capture is already running")

        capture = None
        if capability is Capability.RAW_FRAMES:
            try:
                capture = await self._open(self._raw_factory)
            except CaptureError as exc:
                logger.warning(
                    "Raw frame capture unavailable (%s), falling back to container encoding", exc
                )
        if capture is None:
            capture = await self._open(self._container_factory)

        self._capture = capture
        self._frames_sent = 0
        self._pump_task = asyncio.create_task(self._pump(capture))
        logger.info("Capture started (mode=%s)", capture.mode.name)
        return capture.mode

    async def stop(self, end_of_stream: bool = True) -> None:
        """Release the capture and drain the pump, then mark the end of the utterance unless told not to."""
        capture, self._capture = self._capture, None
        if capture is None:
            return
        try:
            await capture.stop()
        finally:
            await self._finish_pump()
            if end_of_stream:
                await self._sink.send_end_of_stream()
        logger.info("Capture stopped (%d frames sent)", self._frames_sent)

    async def _open(self, factory: Callable[[], FrameCapturePort]) -> FrameCapturePort:
        capture = factory()
        started = False
        try:
            await capture.start()
            started = True
        finally:
            if not started:
                await capture.stop()
        return capture

    async def _pump(self, capture: FrameCapturePort) -> None:
        try:
            async for frame in capture.frames():
                if await self._sink.send_frame(frame):
                    self._frames_sent += 1
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Capture failed (mode=%s)", capture.mode.name)
            if self.on_failure:
                self.on_failure(exc)

    async def _finish_pump(self) -> None:
        task, self._pump_task = self._pump_task, None
        if task is None or task is asyncio.current_task():
            return
        try:
            await asyncio.wait_for(task, timeout=self._drain_timeout)
        except asyncio.TimeoutError:
            logger.warning("Capture did not drain within %.1fs", self._drain_timeout)
