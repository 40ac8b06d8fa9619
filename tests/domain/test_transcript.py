from live_transcribe.domain.transcript import (
    IDLE_PLACEHOLDER,
    NO_AUDIO_PLACEHOLDER,
    Finality,
    TrailingBuffers,
    TranscriptLine,
    TranscriptView,
    format_line,
)


class TestFormatLine:
    def test_speaker_and_time_range(self):
        line = TranscriptLine(text="hello", speaker=1, start=0.0, end=1.23)
        assert format_line(line) == "Speaker 1: [0.0s - 1.2s] hello"

    def test_hidden_speakers_have_no_label(self):
        assert format_line(TranscriptLine(text="hm", speaker=0)) == "hm"
        assert format_line(TranscriptLine(text="...", speaker=-2)) == "..."

    def test_missing_end_hides_time_range(self):
        assert format_line(TranscriptLine(text="hi", start=1.0)) == "hi"

    def test_buffers_follow_text(self):
        line = TranscriptLine(text="hello", speaker=1)
        buffers = TrailingBuffers(transcription="there", diarization="you")
        assert format_line(line, buffers) == "Speaker 1: hello you there"

    def test_translations_are_secondary_blocks(self):
        line = TranscriptLine(text="hola", translation="hello")
        buffers = TrailingBuffers(translation="world")
        assert format_line(line, buffers) == (
            "hola\n    Translation: hello\n    Translation: world"
        )


class TestReplaceLines:
    def test_starts_with_idle_placeholder(self):
        view = TranscriptView()
        assert view.entries() == [IDLE_PLACEHOLDER]

    def test_full_replace(self):
        view = TranscriptView()
        view.replace_lines([TranscriptLine("a"), TranscriptLine("b")])
        view.replace_lines([TranscriptLine("c")])
        assert view.entries() == ["c"]

    def test_replaced_lines_are_final(self):
        view = TranscriptView()
        view.update_trailing("partial", is_final=False)
        view.replace_lines([TranscriptLine("x", finality=Finality.PARTIAL)])
        assert all(line.is_final for line in view.lines)

    def test_buffers_attach_to_last_line_only(self):
        view = TranscriptView()
        view.replace_lines(
            [TranscriptLine("one"), TranscriptLine("two")],
            TrailingBuffers(transcription="three"),
        )
        assert view.entries() == ["one", "two three"]

    def test_empty_replace_clears_lines(self):
        view = TranscriptView()
        view.replace_lines([TranscriptLine("one")])
        view.replace_lines([])
        assert len(view) == 0
        assert view.entries() == []


class TestUpdateTrailing:
    def test_partial_then_final_then_partial(self):
        view = TranscriptView()
        view.update_trailing("hel", is_final=False)
        view.update_trailing("hello", is_final=True)
        view.update_trailing("wor", is_final=False)
        assert [line.text for line in view.lines] == ["hello", "wor"]
        assert view.lines[0].is_final
        assert not view.lines[1].is_final

    def test_partial_is_replaced_in_place(self):
        view = TranscriptView()
        view.update_trailing("a", is_final=False)
        view.update_trailing("ab", is_final=False)
        view.update_trailing("abc", is_final=False)
        assert len(view) == 1
        assert view.last_line.text == "abc"

    def test_at_most_one_partial_and_it_is_last(self):
        view = TranscriptView()
        for text, final in [("a", False), ("a1", True), ("b", False), ("b1", False), ("b2", True), ("c", False)]:
            view.update_trailing(text, is_final=final)
            partial = [i for i, line in enumerate(view.lines) if not line.is_final]
            assert len(partial) <= 1
            if partial:
                assert partial[0] == len(view) - 1

    def test_blank_text_is_ignored(self):
        view = TranscriptView()
        view.update_trailing("   ", is_final=True)
        assert view.entries() == [IDLE_PLACEHOLDER]

    def test_legacy_update_clears_buffers(self):
        view = TranscriptView()
        view.replace_lines([TranscriptLine("one")], TrailingBuffers(transcription="tail"))
        view.update_trailing("two", is_final=True)
        assert not view.buffers
        assert view.entries() == ["one", "two"]


class TestPlaceholders:
    def test_no_audio_replaces_lines(self):
        view = TranscriptView()
        view.replace_lines([TranscriptLine("one")])
        view.show_no_audio()
        assert view.entries() == [NO_AUDIO_PLACEHOLDER]

    def test_next_update_drops_no_audio_placeholder(self):
        view = TranscriptView()
        view.show_no_audio()
        view.replace_lines([TranscriptLine("back")])
        assert view.entries() == ["back"]

    def test_clear_restores_idle_placeholder(self):
        view = TranscriptView()
        view.replace_lines([TranscriptLine("one")])
        view.clear()
        assert len(view) == 0
        assert view.text() == IDLE_PLACEHOLDER


class TestChangeListener:
    def test_called_on_every_change(self):
        view = TranscriptView()
        calls = []
        view.on_change = lambda: calls.append(len(view))
        view.update_trailing("a", is_final=True)
        view.replace_lines([])
        view.clear()
        assert calls == [1, 0, 0]

    def test_listener_failure_does_not_break_updates(self):
        view = TranscriptView()

        def broken():
            raise RuntimeError("render failed")

        view.on_change = broken
        view.update_trailing("still here", is_final=True)
        assert view.entries() == ["still here"]
