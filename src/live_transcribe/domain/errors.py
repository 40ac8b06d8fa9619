class TranscribeError(Exception):
    pass


class TransportError(TranscribeError):
    """Connecting to or talking over the recognition socket failed."""


class ProtocolError(TranscribeError):
    """An inbound message could not be understood."""


class CaptureError(TranscribeError):
    """The capture device or the encoder could not be used."""
