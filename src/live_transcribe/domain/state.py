from enum import Enum, auto


class ConnectionState(Enum):
    IDLE = auto()
    CONNECTING = auto()
    OPEN = auto()
    CLOSING = auto()
    CLOSED = auto()
    FAILED = auto()


class Capability(Enum):
    RAW_FRAMES = auto()
    CONTAINER_ENCODING = auto()


VALID_TRANSITIONS: dict[ConnectionState, set[ConnectionState]] = {
    ConnectionState.IDLE: {ConnectionState.CONNECTING},
    ConnectionState.CONNECTING: {ConnectionState.OPEN, ConnectionState.FAILED, ConnectionState.CLOSED},
    ConnectionState.OPEN: {ConnectionState.CLOSING, ConnectionState.CLOSED, ConnectionState.CONNECTING},
    ConnectionState.CLOSING: {ConnectionState.CLOSED},
    ConnectionState.CLOSED: {ConnectionState.CONNECTING},
    ConnectionState.FAILED: {ConnectionState.CONNECTING},
}


class InvalidTransitionError(Exception):
    pass


def validate_transition(current: ConnectionState, target: ConnectionState) -> None:
    if target not in VALID_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(f"Cannot transition from {current.name} to {target.name}")
