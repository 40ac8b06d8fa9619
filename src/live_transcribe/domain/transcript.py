"""
Transcript view fed by the recognition service.

Two update shapes reach the view:
  {"lines": [...], "buffer_transcription": "...", "status": "..."}
      authoritative full state; every line is replaced
  {"text": "...", "is_final": false}
      legacy single-line shape; updates or appends the trailing line

At most one line is Partial at any time and it is always the last one.
"""

import dataclasses
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum, auto

logger = logging.getLogger(__name__)

IDLE_PLACEHOLDER = "Transcription results will appear here once recording starts"
NO_AUDIO_PLACEHOLDER = "No audio detected..."

# 0 = unknown speaker, -2 = silence
HIDDEN_SPEAKERS = frozenset({0, -2})


class Finality(Enum):
    PARTIAL = auto()
    FINAL = auto()


@dataclass(frozen=True)
class TranscriptLine:
    text: str
    speaker: int | None = None
    start: float | None = None
    end: float | None = None
    translation: str | None = None
    finality: Finality = Finality.FINAL

    @property
    def is_final(self) -> bool:
        return self.finality is Finality.FINAL

    @property
    def speaker_label(self) -> str | None:
        if self.speaker is None or self.speaker in HIDDEN_SPEAKERS:
            return None
        return f"Speaker {self.speaker}"

    @property
    def time_range(self) -> str | None:
        if self.start is None or self.end is None:
            return None
        return f"[{self.start:.1f}s - {self.end:.1f}s]"


@dataclass(frozen=True)
class TrailingBuffers:
    transcription: str = ""
    diarization: str = ""
    translation: str = ""

    def __bool__(self) -> bool:
        return bool(self.transcription or self.diarization or self.translation)


def format_line(line: TranscriptLine, buffers: TrailingBuffers | None = None) -> str:
    head = ""
    if line.speaker_label:
        head += f"{line.speaker_label}: "
    if line.time_range:
        head += f"{line.time_range} "
    head += line.text

    if buffers:
        if buffers.diarization:
            head += f" {buffers.diarization}"
        if buffers.transcription:
            head += f" {buffers.transcription}"

    blocks = [head]
    if line.translation:
        blocks.append(f"Translation: {line.translation}")
    if buffers and buffers.translation:
        blocks.append(f"Translation: {buffers.translation}")
    return "\n    ".join(blocks)


class TranscriptView:
    def __init__(self) -> None:
        self._lines: list[TranscriptLine] = []
        self._buffers = TrailingBuffers()
        self._placeholder: str | None = IDLE_PLACEHOLDER
        self.on_change: Callable[[], None] | None = None

    @property
    def lines(self) -> list[TranscriptLine]:
        return list(self._lines)

    @property
    def buffers(self) -> TrailingBuffers:
        return self._buffers

    @property
    def placeholder(self) -> str | None:
        return self._placeholder

    @property
    def last_line(self) -> TranscriptLine | None:
        return self._lines[-1] if self._lines else None

    def replace_lines(
        self,
        lines: list[TranscriptLine],
        buffers: TrailingBuffers | None = None,
    ) -> None:
        self._placeholder = None
        self._lines = [dataclasses.replace(line, finality=Finality.FINAL) for line in lines]
        self._buffers = buffers or TrailingBuffers()
        self._changed()

    def update_trailing(self, text: str, is_final: bool) -> None:
        if not text.strip():
            return

        self._placeholder = None
        self._buffers = TrailingBuffers()
        finality = Finality.FINAL if is_final else Finality.PARTIAL
        last = self.last_line

        if last is not None and not last.is_final:
            self._lines[-1] = dataclasses.replace(last, text=text, finality=finality)
        else:
            self._lines.append(TranscriptLine(text=text, finality=finality))
        self._changed()

    def show_no_audio(self) -> None:
        self._lines.clear()
        self._buffers = TrailingBuffers()
        self._placeholder = NO_AUDIO_PLACEHOLDER
        self._changed()

    def clear(self) -> None:
        self._lines.clear()
        self._buffers = TrailingBuffers()
        self._placeholder = IDLE_PLACEHOLDER
        self._changed()

    def entries(self) -> list[str]:
        if self._placeholder is not None:
            return [self._placeholder]
        last_index = len(self._lines) - 1
        return [
            format_line(line, self._buffers if index == last_index else None)
            for index, line in enumerate(self._lines)
        ]

    def text(self) -> str:
        return "\n".join(self.entries())

    def _changed(self) -> None:
        if self.on_change:
            try:
                self.on_change()
            except Exception:
                logger.exception("Transcript change listener failed")

    def __len__(self) -> int:
        return len(self._lines)

    def __repr__(self) -> str:
        return f"TranscriptView({len(self._lines)} lines)"
