"""Local terminal helpers: size, raw mode and size-change notification.

Terminal size changes are delivered through a SizeNotifier. Platforms with
SIGWINCH get a signal-driven notifier; everything else polls.
"""

from __future__ import annotations

import os
import signal
import sys
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any, TextIO

POLL_INTERVAL = 0.25

SizeCallback = Callable[[], None]


def get_size(stream: TextIO | None = None) -> tuple[int, int]:
    """Return (height, width) of the terminal behind ``stream``.

    Returns (0, 0) when the stream is not a terminal.
    """
    stream = stream if stream is not None else sys.stdout
    try:
        if not stream.isatty():
            return 0, 0
        size = os.get_terminal_size(stream.fileno())
    except (AttributeError, ValueError, OSError):
        return 0, 0
    return size.lines, size.columns


def is_terminal(stream: Any) -> bool:
    try:
        return bool(stream.isatty())
    except (AttributeError, ValueError):
        return False


@contextmanager
def raw_mode(stream: Any) -> Iterator[None]:
    """Put a terminal into raw mode so control characters pass through.

    The previous terminal attributes are restored on every exit path. Streams
    that are not terminals, and platforms without termios, are left alone.
    """
    # Non-POSIX consoles have no termios; the stream is passed through as-is
    if os.name != "posix" or not is_terminal(stream):
        yield
        return

    import termios
    import tty

    fd = stream.fileno()
    previous = termios.tcgetattr(fd)
    tty.setraw(fd)
    try:
        yield
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, previous)


class SizeNotifier(ABC):
    """Calls a callback whenever the local terminal size may have changed."""

    @abstractmethod
    def start(self, callback: SizeCallback) -> None: ...

    @abstractmethod
    def stop(self) -> None: ...


class SignalSizeNotifier(SizeNotifier):
    """Forwards SIGWINCH to the callback.

    Signal handlers can only be installed from the main thread.
    """

    def __init__(self) -> None:
        self._previous: Any = None
        self._installed = False

    def start(self, callback: SizeCallback) -> None:
        def handler(signum: int, frame: Any) -> None:
            callback()

        self._previous = signal.signal(signal.SIGWINCH, handler)
        self._installed = True

    def stop(self) -> None:
        if not self._installed:
            return
        signal.signal(signal.SIGWINCH, self._previous or signal.SIG_DFL)
        self._installed = False


class PollingSizeNotifier(SizeNotifier):
    """Polls the terminal size and calls back only when it changed."""

    def __init__(
        self,
        interval: float = POLL_INTERVAL,
        size_fn: Callable[[], tuple[int, int]] = get_size,
    ) -> None:
        self.interval = interval
        self._size_fn = size_fn
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self, callback: SizeCallback) -> None:
        self._stop.clear()
        previous = self._size_fn()

        def run() -> None:
            nonlocal previous
            while not self._stop.wait(self.interval):
                current = self._size_fn()
                if current != previous:
                    callback()
                previous = current

        self._thread = threading.Thread(target=run, name="berth-tty-poll", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.interval * 2)
        self._thread = None


def select_size_notifier() -> SizeNotifier:
    """Pick the notifier supported by this platform and thread."""
    if hasattr(signal, "SIGWINCH") and threading.current_thread() is threading.main_thread():
        return SignalSizeNotifier()
    return PollingSizeNotifier()
