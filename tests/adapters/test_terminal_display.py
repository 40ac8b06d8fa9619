import io

from live_transcribe.adapters.terminal_display import CLEAR_SCREEN, HELP_LINE, TerminalDisplay
from live_transcribe.domain.transcript import (
    IDLE_PLACEHOLDER,
    TrailingBuffers,
    TranscriptLine,
    TranscriptView,
)
from live_transcribe.log_format import DIM, MAGENTA


def make_display(color: bool = False):
    view = TranscriptView()
    stream = io.StringIO()
    display = TerminalDisplay(view, stream=stream, color=color)
    display.attach()
    return view, stream, display


class TestCompose:
    def test_idle_placeholder(self):
        _, _, display = make_display()
        display.show_status("Ready")
        assert display.compose().splitlines() == ["00:00  Ready", HELP_LINE, "", IDLE_PLACEHOLDER]

    def test_lines_with_labels_and_buffers(self):
        view, _, display = make_display()
        view.replace_lines(
            [
                TranscriptLine("hello", speaker=1, start=0.0, end=1.2),
                TranscriptLine("there", speaker=0),
            ],
            TrailingBuffers(transcription="friend"),
        )
        body = display.compose().splitlines()[3:]
        assert body == ["Speaker 1: [0.0s - 1.2s] hello", "there friend"]

    def test_timer_label(self):
        _, _, display = make_display()
        display.show_timer("01:05")
        display.show_status("Transcribing...", "recording")
        assert display.compose().splitlines()[0] == "01:05  Transcribing..."

    def test_partial_line_is_dimmed(self):
        view, _, display = make_display(color=True)
        view.update_trailing("maybe", is_final=False)
        assert f"{DIM}maybe" in display.compose()

    def test_speaker_label_is_colored(self):
        view, _, display = make_display(color=True)
        view.replace_lines([TranscriptLine("hi", speaker=2)])
        assert f"{MAGENTA}Speaker 2:" in display.compose()


class TestRender:
    def test_view_changes_trigger_render(self):
        view, stream, _ = make_display()
        view.update_trailing("hello", is_final=True)
        assert "hello" in stream.getvalue()

    def test_plain_stream_is_not_cleared(self):
        _, stream, display = make_display(color=False)
        display.render()
        assert CLEAR_SCREEN not in stream.getvalue()

    def test_color_stream_is_cleared(self):
        _, stream, display = make_display(color=True)
        display.render()
        assert stream.getvalue().startswith(CLEAR_SCREEN)

    def test_same_timer_does_not_rerender(self):
        _, stream, display = make_display()
        display.show_timer("00:01")
        size = len(stream.getvalue())
        display.show_timer("00:01")
        assert len(stream.getvalue()) == size
