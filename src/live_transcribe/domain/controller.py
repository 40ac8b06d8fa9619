import asyncio
import logging
import time
from collections.abc import Callable

from live_transcribe.domain.capture import CapturePipeline
from live_transcribe.domain.errors import TranscribeError
from live_transcribe.domain.events import (
    CapabilityNegotiated,
    ConnectionStateChanged,
    ReadyToStopReceived,
    ServerErrorReported,
    SessionEvent,
    TranscriptReceived,
)
from live_transcribe.domain.messages import LegacyTranscript, TranscriptUpdate
from live_transcribe.domain.session import StreamingSession
from live_transcribe.domain.state import Capability, ConnectionState
from live_transcribe.domain.transcript import TranscriptView

logger = logging.getLogger(__name__)

READY_TIMEOUT_SECONDS = 5.0


def apply_transcript(view: TranscriptView, message: TranscriptUpdate | LegacyTranscript) -> None:
    if isinstance(message, LegacyTranscript):
        view.update_trailing(message.text, message.is_final)
    elif message.no_audio:
        view.show_no_audio()
    else:
        view.replace_lines(list(message.lines), message.buffers)


class TranscriptionController:
    def __init__(
        self,
        session: StreamingSession,
        capture: CapturePipeline,
        view: TranscriptView,
        ready_timeout: float = READY_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session = session
        self._capture = capture
        self._view = view
        self._ready_timeout = ready_timeout
        self._clock = clock

        self._recording = False
        self._started_at: float | None = None
        self._status = "Ready"
        self._status_kind = "info"
        self._capture_connection: int | None = None
        self._background: set[asyncio.Task] = set()
        self.on_status: Callable[[str, str], None] | None = None

        self._capture.on_failure = self._on_capture_failure

    @property
    def recording(self) -> bool:
        return self._recording

    @property
    def status(self) -> str:
        return self._status

    @property
    def status_kind(self) -> str:
        return self._status_kind

    @property
    def view(self) -> TranscriptView:
        return self._view

    @property
    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return self._clock() - self._started_at

    def elapsed_label(self) -> str:
        seconds = int(self.elapsed)
        return f"{seconds // 60:02d}:{seconds % 60:02d}"

    async def toggle(self) -> bool:
        if self._recording:
            await self.stop_recording()
        else:
            await self.start_recording()
        return self._recording

    async def start_recording(self) -> bool:
        if self._recording:
            return True

        try:
            if self._session.state is not ConnectionState.OPEN:
                await self._session.connect()
            capability = await self._session.wait_ready(self._ready_timeout)
            mode = await self._capture.start(capability)
        except TranscribeError as exc:
            logger.error("Could not start transcription: %s", exc)
            self._set_status(f"Failed to start transcription: {exc}", "error")
            return False

        self._capture_connection = self._session.connection_id
        self._session.recording = True
        self._recording = True
        self._started_at = self._clock()
        self._view.clear()
        logger.info("Recording started (mode=%s)", mode.name)
        self._set_status("Transcribing...", "recording")
        return True

    async def stop_recording(self) -> None:
        if not self._recording:
            return
        self._recording = False
        self._session.recording = False
        self._started_at = None
        self._set_status("Stopping...", "stopping")
        try:
            await self._capture.stop()
        finally:
            logger.info("Recording stopped")
            self._set_status("Ready", "info")

    def clear_transcript(self) -> None:
        self._view.clear()

    async def shutdown(self) -> None:
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        await self.stop_recording()
        await self._session.close()

    async def run(self) -> None:
        async for event in self._session.events():
            self.handle_event(event)

    def handle_event(self, event: SessionEvent) -> None:
        if isinstance(event, TranscriptReceived) and event.message is not None:
            apply_transcript(self._view, event.message)
        elif isinstance(event, CapabilityNegotiated):
            self._on_capability(event)
        elif isinstance(event, ReadyToStopReceived):
            self._set_status("Transcription complete", "info")
        elif isinstance(event, ServerErrorReported):
            self._set_status(f"Error: {event.message}", "error")
        elif isinstance(event, ConnectionStateChanged):
            self._on_connection_state(event)

    def _on_capability(self, event: CapabilityNegotiated) -> None:
        if not self._recording:
            self._set_status("Connected - ready to transcribe", "connected")
            return
        self._set_status("Transcribing...", "recording")
        if event.connection != self._capture_connection:
            # a reconnect happened mid-recording; the new server may want another mode
            self._spawn(self._restart_capture(event.capability, event.connection))

    async def _restart_capture(self, capability: Capability, connection: int) -> None:
        self._capture_connection = connection
        await self._capture.stop(end_of_stream=False)
        if not self._recording:
            return
        try:
            mode = await self._capture.start(capability)
        except TranscribeError as exc:
            logger.error("Could not resume capture after reconnect: %s", exc)
            self._set_status(f"Audio capture failed: {exc}", "error")
            self._schedule_stop()
            return
        logger.info("Capture restarted for new connection (mode=%s)", mode.name)

    def _on_connection_state(self, event: ConnectionStateChanged) -> None:
        if event.state is ConnectionState.CONNECTING:
            if event.attempt > 1:
                self._set_status(
                    f"Connecting... ({event.attempt}/{event.max_attempts})", "info"
                )
            else:
                self._set_status("Connecting...", "info")
        elif event.state is ConnectionState.FAILED:
            self._set_status("Connection error: cannot reach the server", "error")
            self._schedule_stop()
        elif event.state is ConnectionState.CLOSED and self._recording:
            self._set_status("Connection closed", "error")
            self._schedule_stop()

    def _on_capture_failure(self, error: Exception) -> None:
        self._set_status(f"Audio capture failed: {error}", "error")
        self._schedule_stop()

    def _schedule_stop(self) -> None:
        if not self._recording:
            return
        status, kind = self._status, self._status_kind

        async def stop_keeping_status() -> None:
            await self.stop_recording()
            self._set_status(status, kind)

        self._spawn(stop_keeping_status())

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Background task failed: %s", error, exc_info=error)

    def _set_status(self, message: str, kind: str = "info") -> None:
        self._status = message
        self._status_kind = kind
        logger.debug("Status [%s]: %s", kind, message)
        if self.on_status:
            self.on_status(message, kind)
