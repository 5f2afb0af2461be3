"""Tests for output line buffering."""

from hypothesis import given
from hypothesis import strategies as st

from notesync.sync.buffer import OutputLineBuffer


class TestOutputLineBuffer:
    """Tests for OutputLineBuffer."""

    def test_complete_lines_emitted(self) -> None:
        """Lines ending in a newline should be emitted at once."""
        buffer = OutputLineBuffer()

        assert buffer.feed("one\ntwo\n") == ["one", "two"]
        assert buffer.residual == ""
        assert len(buffer) == 2

    def test_partial_line_held_back(self) -> None:
        """Text after the last newline should wait for the next chunk."""
        buffer = OutputLineBuffer()

        assert buffer.feed("Transf") == []
        assert buffer.residual == "Transf"
        assert buffer.feed("erred: 3\nElap") == ["Transferred: 3"]
        assert buffer.residual == "Elap"

    def test_empty_lines_kept(self) -> None:
        """Blank lines are part of the output."""
        buffer = OutputLineBuffer()
        assert buffer.feed("a\n\nb\n") == ["a", "", "b"]

    def test_flush_emits_residual(self) -> None:
        """flush() should emit a final line without a trailing newline."""
        buffer = OutputLineBuffer()
        buffer.feed("done\nlast")

        assert buffer.flush() == ["last"]
        assert buffer.snapshot() == ["done", "last"]
        assert buffer.flush() == []

    def test_flush_without_residual(self) -> None:
        """flush() with nothing pending should emit nothing."""
        buffer = OutputLineBuffer()
        buffer.feed("done\n")
        assert buffer.flush() == []
        assert buffer.snapshot() == ["done"]

    def test_snapshot_is_a_copy(self) -> None:
        """Changing a snapshot must not affect the buffer."""
        buffer = OutputLineBuffer()
        buffer.feed("a\n")
        snapshot = buffer.snapshot()
        snapshot.append("b")

        assert buffer.snapshot() == ["a"]

    @given(
        text=st.text(alphabet=st.characters(blacklist_categories=("Cs",)), max_size=200),
        cuts=st.lists(st.integers(min_value=0, max_value=200), max_size=10),
    )
    def test_chunking_preserves_text(self, text: str, cuts: list[int]) -> None:
        """Any split of the input should give back the exact text."""
        positions = sorted({min(c, len(text)) for c in cuts})
        chunks = [text[i:j] for i, j in zip([0, *positions], [*positions, len(text)])]

        buffer = OutputLineBuffer()
        emitted: list[str] = []
        for chunk in chunks:
            emitted.extend(buffer.feed(chunk))

        assert "\n".join([*emitted, buffer.residual]) == text
        assert all("\n" not in line for line in emitted)
        assert emitted == buffer.snapshot()
