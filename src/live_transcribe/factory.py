import functools
import logging

from live_transcribe.adapters.ffmpeg_encoder import FfmpegContainerEncoder
from live_transcribe.adapters.sounddevice_audio import SounddeviceSource
from live_transcribe.adapters.websocket_transport import open_websocket
from live_transcribe.config import TranscribeConfig
from live_transcribe.domain.capture import CapturePipeline, ContainerCapture, RawFrameCapture
from live_transcribe.domain.controller import TranscriptionController
from live_transcribe.domain.session import StreamingSession
from live_transcribe.domain.transcript import TranscriptView

logger = logging.getLogger(__name__)


def create_session(config: TranscribeConfig) -> StreamingSession:
    return StreamingSession(
        uri=config.ws_url,
        connector=open_websocket,
        retries=config.connect_retries,
        retry_delay=config.connect_retry_delay,
    )


def create_raw_capture(config: TranscribeConfig) -> RawFrameCapture:
    source = SounddeviceSource(
        device=config.capture_device or None,
        block_duration_ms=config.raw_block_ms,
    )
    return RawFrameCapture(source, target_rate=config.target_sample_rate)


def create_container_capture(config: TranscribeConfig) -> ContainerCapture:
    source = SounddeviceSource(
        device=config.capture_device or None,
        block_duration_ms=config.container_slice_ms,
    )
    encoder = FfmpegContainerEncoder(
        container=config.container_format,
        bitrate=config.container_bitrate,
        ffmpeg_path=config.ffmpeg_path,
    )
    return ContainerCapture(source, encoder)


def create_controller(config: TranscribeConfig) -> TranscriptionController:
    session = create_session(config)
    capture = CapturePipeline(
        sink=session,
        raw_factory=functools.partial(create_raw_capture, config),
        container_factory=functools.partial(create_container_capture, config),
    )
    logger.debug("Controller wired for %s", config.ws_url)
    return TranscriptionController(
        session=session,
        capture=capture,
        view=TranscriptView(),
        ready_timeout=config.ready_timeout_seconds,
    )
