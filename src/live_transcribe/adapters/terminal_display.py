import sys
from typing import TextIO

from live_transcribe.domain.transcript import TranscriptView
from live_transcribe.log_format import BOLD, CYAN, DIM, GREEN, MAGENTA, RED, RESET, YELLOW

CLEAR_SCREEN = "\033[2J\033[H"

STATUS_COLORS = {
    "info": CYAN,
    "connected": GREEN,
    "recording": BOLD + RED,
    "stopping": YELLOW,
    "error": BOLD + RED,
}

HELP_LINE = "[Enter] start/stop  [c] clear  [q] quit"


class TerminalDisplay:
    def __init__(self, view: TranscriptView, stream: TextIO | None = None, color: bool | None = None) -> None:
        self._view = view
        self._stream = stream or sys.stdout
        self._color = self._stream.isatty() if color is None else color
        self._status = ""
        self._status_kind = "info"
        self._timer = ""

    def attach(self) -> None:
        self._view.on_change = self.render

    def show_status(self, message: str, kind: str = "info") -> None:
        self._status = message
        self._status_kind = kind
        self.render()

    def show_timer(self, label: str) -> None:
        if label != self._timer:
            self._timer = label
            self.render()

    def compose(self) -> str:
        out = [self._paint(f"{self._timer or '00:00'}  {self._status}", STATUS_COLORS.get(self._status_kind, ""))]
        out.append(self._paint(HELP_LINE, DIM))
        out.append("")

        if self._view.placeholder is not None:
            out.append(self._paint(self._view.placeholder, DIM))
            return "\n".join(out)

        entries = self._view.entries()
        lines = self._view.lines
        for line, entry in zip(lines, entries):
            color = "" if line.is_final else DIM
            if line.speaker_label:
                label = f"{line.speaker_label}:"
                entry = entry.replace(label, self._paint(label, MAGENTA), 1)
            out.append(self._paint(entry, color) if color else entry)
        return "\n".join(out)

    def render(self) -> None:
        prefix = CLEAR_SCREEN if self._color else ""
        self._stream.write(prefix + self.compose() + "\n")
        self._stream.flush()

    def _paint(self, text: str, color: str) -> str:
        if not self._color or not color:
            return text
        return f"{color}{text}{RESET}"
