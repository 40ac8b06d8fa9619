from dataclasses import dataclass, field
from time import time

from live_transcribe.domain.messages import LegacyTranscript, TranscriptUpdate
from live_transcribe.domain.state import Capability, ConnectionState


@dataclass(frozen=True)
class SessionEvent:
    timestamp: float = field(default_factory=time)


@dataclass(frozen=True)
class ConnectionStateChanged(SessionEvent):
    state: ConnectionState = ConnectionState.IDLE
    attempt: int = 0
    max_attempts: int = 0
    reason: str = ""


@dataclass(frozen=True)
class CapabilityNegotiated(SessionEvent):
    capability: Capability = Capability.CONTAINER_ENCODING
    connection: int = 0


@dataclass(frozen=True)
class TranscriptReceived(SessionEvent):
    message: TranscriptUpdate | LegacyTranscript | None = None


@dataclass(frozen=True)
class ReadyToStopReceived(SessionEvent):
    pass


@dataclass(frozen=True)
class ServerErrorReported(SessionEvent):
    message: str = ""
