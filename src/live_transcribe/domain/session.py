import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator

from live_transcribe.domain.errors import ProtocolError, TransportError
from live_transcribe.domain.events import (
    CapabilityNegotiated,
    ConnectionStateChanged,
    ReadyToStopReceived,
    ServerErrorReported,
    SessionEvent,
    TranscriptReceived,
)
from live_transcribe.domain.messages import (
    ConfigMessage,
    LegacyTranscript,
    ReadyToStop,
    ServerError,
    TranscriptUpdate,
    UnknownMessage,
    parse_message,
)
from live_transcribe.domain.state import Capability, ConnectionState, validate_transition
from live_transcribe.ports.transport import NORMAL_CLOSURE, Connector, SocketPort

logger = logging.getLogger(__name__)

END_OF_STREAM = b""


class StreamingSession:
    def __init__(
        self,
        uri: str,
        connector: Connector,
        retries: int = 5,
        retry_delay: float = 2.0,
    ) -> None:
        if retries < 1:
            raise ValueError("retries must be at least 1")
        self._uri = uri
        self._connector = connector
        self._retries = retries
        self._retry_delay = retry_delay

        self._state = ConnectionState.IDLE
        self._retry_count = 0
        self._capability: Capability | None = None
        self._socket: SocketPort | None = None
        self._ready: asyncio.Future[Capability] | None = None
        self._receive_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._connection_id = 0
        self._events: asyncio.Queue[SessionEvent] = asyncio.Queue()
        self._recording = False

    @property
    def uri(self) -> str:
        return self._uri

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def capability(self) -> Capability | None:
        return self._capability

    @property
    def connection_id(self) -> int:
        """Increments each time a socket opens; a reconnect gets a new id."""
        return self._connection_id

    @property
    def is_ready(self) -> bool:
        return self._state is ConnectionState.OPEN and self._capability is not None

    @property
    def recording(self) -> bool:
        return self._recording

    @recording.setter
    def recording(self, active: bool) -> None:
        self._recording = active

    async def connect(self) -> None:
        if self._state in (ConnectionState.CONNECTING, ConnectionState.OPEN):
            return
        await self._connect_with_retry()

    async def wait_ready(self, timeout: float | None = None) -> Capability:
        if self._ready is None:
            raise TransportError("Session has not been connected")
        try:
            return await asyncio.wait_for(asyncio.shield(self._ready), timeout)
        except asyncio.TimeoutError:
            raise TransportError(
                f"No config message from {self._uri} within {timeout:.1f}s"
            ) from None

    async def send_frame(self, frame: bytes) -> bool:
        if not self.is_ready or self._socket is None:
            logger.debug("Dropping %d-byte frame, session is %s", len(frame), self._state.name)
            return False
        try:
            await self._socket.send(frame)
        except TransportError as exc:
            logger.warning("Failed to send %d-byte frame: %s", len(frame), exc)
            return False
        return True

    async def send_end_of_stream(self) -> bool:
        sent = await self.send_frame(END_OF_STREAM)
        if sent:
            logger.info("End-of-stream marker sent")
        return sent

    async def close(self) -> None:
        if self._state is ConnectionState.CONNECTING and self._reconnect_task is not None:
            await self._abort_reconnect()
            return
        if self._state is not ConnectionState.OPEN:
            return
        self._transition_to(ConnectionState.CLOSING)
        socket, self._socket = self._socket, None
        try:
            if socket is not None:
                await socket.close(NORMAL_CLOSURE)
        finally:
            if self._receive_task and self._receive_task is not asyncio.current_task():
                try:
                    await asyncio.wait_for(self._receive_task, timeout=2.0)
                except asyncio.TimeoutError:
                    logger.warning("Receive loop did not stop after close")
            self._receive_task = None
            self._capability = None
            self._transition_to(ConnectionState.CLOSED)

    async def _abort_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        self._fail_readiness(TransportError(f"Session to {self._uri} closed while reconnecting"))
        self._capability = None
        self._transition_to(ConnectionState.CLOSED, reason="closed while reconnecting")

    async def next_event(self) -> SessionEvent:
        return await self._events.get()

    async def events(self) -> AsyncIterator[SessionEvent]:
        while True:
            yield await self._events.get()

    def _transition_to(self, target: ConnectionState, attempt: int = 0, reason: str = "") -> None:
        validate_transition(self._state, target)
        logger.info("State: %s -> %s", self._state.name, target.name)
        self._state = target
        self._events.put_nowait(
            ConnectionStateChanged(
                state=target,
                attempt=attempt,
                max_attempts=self._retries,
                reason=reason,
            )
        )

    def _new_readiness(self) -> None:
        self._fail_readiness(TransportError(f"Connection to {self._uri} was reset"))
        self._capability = None
        self._ready = asyncio.get_running_loop().create_future()

    def _fail_readiness(self, error: TransportError) -> None:
        if self._ready is not None and not self._ready.done():
            self._ready.set_exception(error)
            # waiters re-raise it; mark it retrieved for everyone else
            self._ready.exception()

    async def _connect_with_retry(self) -> None:
        self._new_readiness()
        self._transition_to(ConnectionState.CONNECTING, attempt=1)
        last_error: Exception | None = None

        for attempt in range(1, self._retries + 1):
            self._retry_count = attempt
            try:
                socket = await self._connector(self._uri)
            except (TransportError, OSError) as exc:
                last_error = exc
                logger.warning(
                    "Connection attempt %d/%d to %s failed: %s",
                    attempt, self._retries, self._uri, exc,
                )
                if attempt < self._retries:
                    self._events.put_nowait(
                        ConnectionStateChanged(
                            state=ConnectionState.CONNECTING,
                            attempt=attempt + 1,
                            max_attempts=self._retries,
                            reason=str(exc),
                        )
                    )
                    await asyncio.sleep(self._retry_delay)
                continue

            self._socket = socket
            self._connection_id += 1
            self._transition_to(ConnectionState.OPEN, attempt=attempt)
            self._receive_task = asyncio.create_task(self._receive_loop(socket))
            return

        error = TransportError(
            f"Could not connect to {self._uri} after {self._retries} attempts"
        )
        self._transition_to(ConnectionState.FAILED, attempt=self._retries, reason=str(last_error))
        self._fail_readiness(error)
        raise error from last_error

    async def _receive_loop(self, socket: SocketPort) -> None:
        try:
            async for raw in socket.messages():
                self._dispatch(raw)
        except TransportError as exc:
            logger.warning("Receive loop ended: %s", exc)
        if socket is self._socket:
            await self._handle_closed(socket.close_code)

    def _dispatch(self, raw: bytes | str) -> None:
        if not isinstance(raw, str):
            logger.warning("Discarding unexpected binary message (%d bytes)", len(raw))
            return

        try:
            message = parse_message(raw)
        except ProtocolError as exc:
            logger.error("Dropping malformed message: %s", exc)
            return

        if isinstance(message, ConfigMessage):
            self._apply_config(message)
        elif isinstance(message, (TranscriptUpdate, LegacyTranscript)):
            self._events.put_nowait(TranscriptReceived(message=message))
        elif isinstance(message, ReadyToStop):
            logger.info("Server finished transcribing")
            self._events.put_nowait(ReadyToStopReceived())
        elif isinstance(message, ServerError):
            logger.error("Server error: %s", message.message)
            self._events.put_nowait(ServerErrorReported(message=message.message))
        elif isinstance(message, UnknownMessage):
            logger.info("Ignoring message of unknown type %r", message.kind)

    def _apply_config(self, message: ConfigMessage) -> None:
        if self._capability is not None:
            logger.debug("Ignoring repeated config message")
            return
        self._capability = message.capability
        logger.info("Capability: %s", self._capability.name)
        if self._ready is not None and not self._ready.done():
            self._ready.set_result(self._capability)
        self._events.put_nowait(
            CapabilityNegotiated(capability=self._capability, connection=self._connection_id)
        )

    async def _handle_closed(self, code: int | None) -> None:
        if self._state is not ConnectionState.OPEN:
            return
        self._socket = None
        self._receive_task = None

        if self._recording and code != NORMAL_CLOSURE:
            logger.warning("Connection lost while recording (code=%s), reconnecting", code)
            self._reconnect_task = asyncio.current_task()
            try:
                await self._connect_with_retry()
            except TransportError as exc:
                logger.error("Reconnect failed: %s", exc)
            finally:
                self._reconnect_task = None
            return

        logger.info("Connection closed (code=%s)", code)
        self._capability = None
        self._transition_to(ConnectionState.CLOSED, reason=f"code={code}")
