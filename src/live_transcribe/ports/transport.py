from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Protocol

NORMAL_CLOSURE = 1000


class SocketPort(Protocol):
    @property
    def close_code(self) -> int | None: ...
    async def send(self, data: bytes | str) -> None: ...
    def messages(self) -> AsyncIterator[bytes | str]: ...
    async def close(self, code: int = NORMAL_CLOSURE) -> None: ...


Connector = Callable[[str], Awaitable[SocketPort]]
