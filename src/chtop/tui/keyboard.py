"""
Non-blocking keyboard input for the dashboard.

Terminal reads block, so each read runs in the default executor with a
select() timeout: the worker thread always returns within the timeout
and the task notices stop() promptly. The terminal is put into cbreak
mode (single keypress, no echo) for the lifetime of run() and restored
afterwards.
"""

import asyncio
import select
import sys
import termios
import tty
from collections.abc import Callable

# Escape sequences of the keys the dashboard uses
KEY_UP = "\x1b[A"
KEY_DOWN = "\x1b[B"


def read_key(timeout: float) -> str | None:
    """
    Read one keypress (or arrow-key escape sequence) from stdin.

    Expects stdin to already be in cbreak mode.

    Returns:
        The key, or None when nothing was typed within timeout.
    """
    if not select.select([sys.stdin], [], [], timeout)[0]:
        return None
    key = sys.stdin.read(1)
    if key == "\x1b":
        # Arrow keys arrive as ESC [ <letter>
        while len(key) < 3 and select.select([sys.stdin], [], [], 0.05)[0]:
            key += sys.stdin.read(1)
    return key


class KeyboardTask:
    """
    Feeds keypresses to a callback until stopped.

    Example:
        keyboard = KeyboardTask(on_key=controller.handle_key)
        tg.create_task(keyboard.run())
        keyboard.stop()
    """

    def __init__(self, on_key: Callable[[str], None], poll_timeout: float = 0.3) -> None:
        self._on_key = on_key
        self._poll_timeout = poll_timeout
        self._shutdown = asyncio.Event()

    async def run(self) -> None:
        """Read keys until stop(); a no-op when stdin is not a terminal."""
        if not sys.stdin.isatty():
            await self._shutdown.wait()
            return

        loop = asyncio.get_running_loop()
        fd = sys.stdin.fileno()
        saved = termios.tcgetattr(fd)
        try:
            tty.setcbreak(fd)
            while not self._shutdown.is_set():
                key = await loop.run_in_executor(None, read_key, self._poll_timeout)
                if key is not None:
                    self._on_key(key)
        finally:
            termios.tcsetattr(fd, termios.TCSADRAIN, saved)

    def stop(self) -> None:
        self._shutdown.set()
