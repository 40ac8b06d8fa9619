import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

import janus
import numpy as np
import sounddevice as sd

from live_transcribe.domain.errors import CaptureError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InputDevice:
    index: int
    name: str
    channels: int
    default_sample_rate: float
    is_default: bool = False


def list_input_devices() -> list[InputDevice]:
    try:
        default_input = sd.default.device[0]
    except (IndexError, TypeError):
        default_input = -1
    devices = []
    for index, dev in enumerate(sd.query_devices()):
        if dev["max_input_channels"] <= 0:
            continue
        devices.append(
            InputDevice(
                index=index,
                name=dev["name"],
                channels=dev["max_input_channels"],
                default_sample_rate=dev["default_samplerate"],
                is_default=index == default_input,
            )
        )
    return devices


def resolve_device(device: str | int | None) -> int | None:
    if device is None or device == "":
        return None
    if isinstance(device, int):
        return device
    try:
        return int(device)
    except ValueError:
        pass
    for dev in list_input_devices():
        if device.lower() in dev.name.lower():
            logger.info("Resolved device '%s' -> %d (%s)", device, dev.index, dev.name)
            return dev.index
    raise CaptureError(f"No input device matching '{device}'")


class SounddeviceSource:
    """
    Microphone source that delivers mono float32 blocks.

    With ``sample_rate=None`` the device's native rate is used and the caller
    resamples; otherwise PortAudio is asked for the given rate.
    """

    def __init__(
        self,
        device: str | int | None = None,
        sample_rate: int | None = None,
        block_duration_ms: int = 20,
        queue_size: int = 200,
    ) -> None:
        self._device = device
        self._requested_rate = sample_rate
        self._sample_rate = sample_rate or 0
        self._block_duration_ms = block_duration_ms
        self._queue_size = queue_size
        self._stream: sd.InputStream | None = None
        self._queue: janus.Queue[np.ndarray] | None = None
        self._dropped = 0

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def dropped_blocks(self) -> int:
        return self._dropped

    async def start(self) -> None:
        queue: janus.Queue[np.ndarray] = janus.Queue(maxsize=self._queue_size)
        self._queue = queue
        self._dropped = 0

        def audio_callback(indata: np.ndarray, frames: int, time_info, status) -> None:
            if status:
                logger.warning("Audio capture status: %s", status)
            try:
                queue.sync_q.put_nowait(indata[:, 0].copy())
            except janus.SyncQueueFull:
                self._dropped += 1
            except janus.SyncQueueShutDown:
                pass

        try:
            device = resolve_device(self._device)
            if self._requested_rate is None:
                info = sd.query_devices(device, "input")
                self._sample_rate = int(info["default_samplerate"])
            blocksize = int(self._sample_rate * self._block_duration_ms / 1000)
            self._stream = sd.InputStream(
                device=device,
                samplerate=self._sample_rate,
                channels=1,
                dtype="float32",
                blocksize=blocksize,
                callback=audio_callback,
            )
            self._stream.start()
        except CaptureError:
            await self.stop()
            raise
        except (sd.PortAudioError, ValueError) as exc:
            await self.stop()
            raise CaptureError(f"Cannot open input device: {exc}") from exc

        logger.info(
            "Audio capture started (device=%s, rate=%d, block=%dms)",
            device, self._sample_rate, self._block_duration_ms,
        )

    async def stop(self) -> None:
        if self._stream:
            try:
                self._stream.stop()
                self._stream.close()
            except sd.PortAudioError:
                logger.warning("Error while closing input stream")
            self._stream = None
            logger.info("Audio capture stopped")
        if self._queue:
            self._queue.close()
            await self._queue.wait_closed()
            self._queue = None
        if self._dropped:
            logger.warning("Dropped %d audio blocks (consumer too slow)", self._dropped)

    async def read_blocks(self) -> AsyncIterator[np.ndarray]:
        queue = self._queue
        if not queue:
            return
        while True:
            try:
                block = await asyncio.wait_for(queue.async_q.get(), timeout=1.0)
                yield block
            except asyncio.TimeoutError:
                if self._queue is not queue:
                    break
                continue
            except janus.AsyncQueueShutDown:
                break
