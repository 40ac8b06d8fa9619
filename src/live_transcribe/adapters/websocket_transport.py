import logging
from collections.abc import AsyncIterator

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from live_transcribe.domain.errors import TransportError
from live_transcribe.ports.transport import NORMAL_CLOSURE

logger = logging.getLogger(__name__)


class WebSocketConnection:
    def __init__(self, ws: ClientConnection) -> None:
        self._ws = ws

    @property
    def close_code(self) -> int | None:
        return self._ws.close_code

    async def send(self, data: bytes | str) -> None:
        try:
            await self._ws.send(data)
        except ConnectionClosed as exc:
            raise TransportError(f"Connection closed while sending: {exc}") from exc

    async def messages(self) -> AsyncIterator[bytes | str]:
        try:
            async for message in self._ws:
                yield message
        except ConnectionClosed as exc:
            logger.info("Connection closed by peer: %s", exc)

    async def close(self, code: int = NORMAL_CLOSURE) -> None:
        await self._ws.close(code=code)


async def open_websocket(
    uri: str,
    open_timeout: float = 10.0,
    ping_interval: float | None = 20.0,
) -> WebSocketConnection:
    try:
        ws = await connect(
            uri,
            open_timeout=open_timeout,
            ping_interval=ping_interval,
            max_size=None,
            compression=None,
        )
    except (InvalidHandshake, InvalidURI, TimeoutError) as exc:
        raise TransportError(f"Cannot open {uri}: {exc}") from exc
    logger.info("Connected to %s", uri)
    return WebSocketConnection(ws)
