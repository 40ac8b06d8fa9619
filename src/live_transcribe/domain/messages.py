"""Parsing of JSON text frames sent by the recognition service."""

import json
from dataclasses import dataclass, field
from typing import Any

from live_transcribe.domain.errors import ProtocolError
from live_transcribe.domain.state import Capability
from live_transcribe.domain.transcript import TrailingBuffers, TranscriptLine

NO_AUDIO_STATUS = "no_audio_detected"
DEFAULT_STATUS = "active_transcription"

TRANSCRIPT_KINDS = {None, "transcript_update"}


@dataclass(frozen=True)
class ConfigMessage:
    use_audio_worklet: bool = False

    @property
    def capability(self) -> Capability:
        if self.use_audio_worklet:
            return Capability.RAW_FRAMES
        return Capability.CONTAINER_ENCODING


@dataclass(frozen=True)
class TranscriptUpdate:
    lines: tuple[TranscriptLine, ...] = ()
    buffers: TrailingBuffers = field(default_factory=TrailingBuffers)
    status: str = DEFAULT_STATUS

    @property
    def no_audio(self) -> bool:
        return self.status == NO_AUDIO_STATUS


@dataclass(frozen=True)
class LegacyTranscript:
    text: str
    is_final: bool = False


@dataclass(frozen=True)
class ReadyToStop:
    pass


@dataclass(frozen=True)
class ServerError:
    message: str


@dataclass(frozen=True)
class UnknownMessage:
    kind: str | None
    data: dict = field(default_factory=dict)


InboundMessage = (
    ConfigMessage | TranscriptUpdate | LegacyTranscript | ReadyToStop | ServerError | UnknownMessage
)


def _normalize(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    return value.strip().replace("-", "_")


def _optional_number(data: dict, key: str) -> float | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ProtocolError(f"Line field '{key}' must be a number, got {value!r}")
    return float(value)


def _optional_speaker(data: dict) -> int | None:
    value = data.get("speaker")
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if not isinstance(value, int):
        raise ProtocolError(f"Line field 'speaker' must be an integer, got {value!r}")
    return value


def _optional_text(data: dict, key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    return str(value)


def parse_line(data: Any) -> TranscriptLine:
    if not isinstance(data, dict):
        raise ProtocolError(f"Transcript line must be an object, got {type(data).__name__}")
    return TranscriptLine(
        text=_optional_text(data, "text"),
        speaker=_optional_speaker(data),
        start=_optional_number(data, "start"),
        end=_optional_number(data, "end"),
        translation=_optional_text(data, "translation") or None,
    )


def _has_text(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _parse_transcript(data: dict) -> InboundMessage:
    status = _normalize(data.get("status")) or DEFAULT_STATUS
    lines = data.get("lines")
    if lines is not None and not isinstance(lines, list):
        raise ProtocolError(f"'lines' must be a list, got {type(lines).__name__}")

    if status == NO_AUDIO_STATUS or lines:
        return TranscriptUpdate(
            lines=tuple(parse_line(line) for line in lines or []),
            buffers=TrailingBuffers(
                transcription=_optional_text(data, "buffer_transcription"),
                diarization=_optional_text(data, "buffer_diarization"),
                translation=_optional_text(data, "buffer_translation"),
            ),
            status=status,
        )

    if _has_text(data.get("text")):
        return LegacyTranscript(
            text=data["text"],
            is_final=bool(data.get("is_final") or data.get("final")),
        )
    if _has_text(data.get("transcript")):
        return LegacyTranscript(
            text=data["transcript"],
            is_final=bool(data.get("is_final")),
        )

    if lines is not None:
        return TranscriptUpdate(status=status)
    return UnknownMessage(kind=data.get("type"), data=data)


def parse_message(raw: str) -> InboundMessage:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"Invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ProtocolError(f"Expected a JSON object, got {type(data).__name__}")

    kind = _normalize(data.get("type"))

    if kind == "config":
        return ConfigMessage(use_audio_worklet=bool(data.get("useAudioWorklet", False)))
    if kind == "ready_to_stop":
        return ReadyToStop()
    if kind == "error":
        return ServerError(message=str(data.get("message") or data.get("error") or "Unknown error"))
    if kind in TRANSCRIPT_KINDS:
        return _parse_transcript(data)
    return UnknownMessage(kind=data.get("type"), data=data)
