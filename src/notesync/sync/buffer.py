"""Line buffering for streamed subprocess output."""

from __future__ import annotations

import threading


class OutputLineBuffer:
    """Accumulates raw output chunks into complete newline-delimited lines.

    Chunks may split lines anywhere. The text after the last newline is kept
    as a residual until a later chunk completes it, so joining the emitted
    lines with newlines and appending the residual always gives back the
    exact text fed so far.
    """

    def __init__(self) -> None:
        self._lines: list[str] = []
        self._residual = ""
        self._lock = threading.Lock()

    def feed(self, chunk: str) -> list[str]:
        """Add a chunk of raw output.

        Args:
            chunk: Raw text, with arbitrary boundaries.

        Returns:
            The lines completed by this chunk, in order (possibly empty).
        """
        with self._lock:
            combined = self._residual + chunk
            if "\n" not in combined:
                self._residual = combined
                return []
            *complete, self._residual = combined.split("\n")
            self._lines.extend(complete)
            return complete

    def flush(self) -> list[str]:
        """Emit the residual as a final line, if there is one.

        Call at end of stream so a last line without a trailing newline is
        not lost.
        """
        with self._lock:
            if not self._residual:
                return []
            line = self._residual
            self._residual = ""
            self._lines.append(line)
            return [line]

    def snapshot(self) -> list[str]:
        """Get all complete lines emitted so far, for display."""
        with self._lock:
            return list(self._lines)

    @property
    def residual(self) -> str:
        """Text received after the last newline."""
        return self._residual

    def __len__(self) -> int:
        return len(self._lines)
