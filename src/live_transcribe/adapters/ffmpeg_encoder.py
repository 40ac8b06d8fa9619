import asyncio
import logging
from collections.abc import AsyncIterator

import numpy as np

from live_transcribe.domain.errors import CaptureError

logger = logging.getLogger(__name__)

CONTAINER_CODECS = {
    "webm": "libopus",
    "ogg": "libopus",
}


def build_encode_command(
    sample_rate: int,
    container: str = "webm",
    bitrate: str = "32k",
    ffmpeg_path: str = "ffmpeg",
) -> list[str]:
    if container not in CONTAINER_CODECS:
        raise ValueError(f"Unsupported container format: {container}")
    return [
        ffmpeg_path,
        "-loglevel",
        "error",
        "-f",
        "f32le",
        "-ar",
        str(sample_rate),
        "-ac",
        "1",
        "-i",
        "pipe:0",
        "-c:a",
        CONTAINER_CODECS[container],
        "-b:a",
        bitrate,
        "-flush_packets",
        "1",
        "-f",
        container,
        "pipe:1",
    ]


class FfmpegContainerEncoder:
    def __init__(
        self,
        container: str = "webm",
        bitrate: str = "32k",
        ffmpeg_path: str = "ffmpeg",
        read_size: int = 4096,
    ) -> None:
        self._container = container
        self._bitrate = bitrate
        self._ffmpeg_path = ffmpeg_path
        self._read_size = read_size
        self._process: asyncio.subprocess.Process | None = None

    @property
    def mime_type(self) -> str:
        return f"audio/{self._container}"

    async def start(self, sample_rate: int) -> None:
        command = build_encode_command(
            sample_rate, self._container, self._bitrate, self._ffmpeg_path
        )
        try:
            self._process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except FileNotFoundError as exc:
            raise CaptureError(f"ffmpeg not found at '{self._ffmpeg_path}'") from exc
        except OSError as exc:
            raise CaptureError(f"Cannot start ffmpeg: {exc}") from exc
        logger.info("Encoder started (%s, %d Hz)", self.mime_type, sample_rate)

    async def write(self, block: np.ndarray) -> None:
        if not self._process or not self._process.stdin or self._process.stdin.is_closing():
            return
        data = np.asarray(block, dtype="<f4").tobytes()
        try:
            self._process.stdin.write(data)
            await self._process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise CaptureError(f"Encoder stopped accepting audio: {exc}") from exc

    async def finish(self) -> None:
        if not self._process or not self._process.stdin:
            return
        stdin = self._process.stdin
        if stdin.is_closing():
            return
        try:
            stdin.close()
            await stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError):
            pass

    async def chunks(self) -> AsyncIterator[bytes]:
        if not self._process or not self._process.stdout:
            return
        stdout = self._process.stdout
        while True:
            chunk = await stdout.read(self._read_size)
            if not chunk:
                break
            yield chunk

    async def close(self) -> None:
        process, self._process = self._process, None
        if process is None:
            return
        if process.stdin and not process.stdin.is_closing():
            process.stdin.close()
        if process.returncode is None:
            try:
                await asyncio.wait_for(process.wait(), timeout=3.0)
            except asyncio.TimeoutError:
                logger.warning("Encoder did not exit, killing it")
                process.kill()
                await process.wait()
        if process.returncode:
            logger.warning("Encoder exited with code %d", process.returncode)
        logger.info("Encoder stopped")
