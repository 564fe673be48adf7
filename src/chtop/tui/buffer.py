"""
Log capture for the dashboard's log panel.

While the rich Live display owns the terminal, log records cannot be
written to stderr without tearing the screen. BufferHandler formats
records into Rich markup lines and stores them in an OutputBuffer, a
fixed-size ring buffer (deque with maxlen) that the controller renders
on every refresh.
"""

import logging
from collections import deque
from collections.abc import Iterator

from rich.markup import escape

LEVEL_STYLES = {
    logging.DEBUG: "dim",
    logging.INFO: "cyan",
    logging.WARNING: "yellow",
    logging.ERROR: "bold red",
    logging.CRITICAL: "bold red",
}


class OutputBuffer:
    """
    Fixed-size ring buffer of display lines.

    Oldest lines are discarded once maxlen is reached.

    Example:
        buffer = OutputBuffer(maxlen=100)
        buffer.append("connected to ch-1:8123")
        print(buffer.get_text(n=10))
    """

    def __init__(self, maxlen: int = 100) -> None:
        self._lines: deque[str] = deque(maxlen=maxlen)

    def append(self, line: str) -> None:
        """Add a line; trailing newlines are stripped."""
        self._lines.append(line.rstrip("\n"))

    def get_lines(self, n: int | None = None) -> list[str]:
        """Last n lines (all if n is None), newest last."""
        lines = list(self._lines)
        if n is not None:
            return lines[-n:] if n > 0 else []
        return lines

    def get_text(self, n: int | None = None) -> str:
        return "\n".join(self.get_lines(n))

    def __len__(self) -> int:
        return len(self._lines)

    def __iter__(self) -> Iterator[str]:
        return iter(self._lines)

    def clear(self) -> None:
        self._lines.clear()


class BufferHandler(logging.Handler):
    """
    Logging handler that writes Rich markup lines into an OutputBuffer.

    Message text is escaped so that brackets in server messages are not
    taken for markup.

    Example:
        buffer = OutputBuffer()
        configure_logging("INFO", handler=BufferHandler(buffer))
    """

    def __init__(self, buffer: OutputBuffer, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self.buffer = buffer
        self.setFormatter(logging.Formatter("%(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = escape(self.format(record))
            style = LEVEL_STYLES.get(record.levelno, "")
            when = self.formatter.formatTime(record, "%H:%M:%S") if self.formatter else ""
            level = f"[{style}]{record.levelname[0]}[/{style}]" if style else record.levelname[0]
            for i, line in enumerate(message.splitlines() or [""]):
                prefix = f"[dim]{when}[/dim] {level} " if i == 0 else "           "
                self.buffer.append(prefix + line)
        except Exception:
            self.handleError(record)
