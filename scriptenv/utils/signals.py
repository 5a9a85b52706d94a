"""Signal handling while a child process owns the terminal.

Provides:
- interrupts_forwarded(): Context manager that lets the child handle Ctrl+C
- child_exit_status(): Map a child's return code to a shell-style exit status
"""

from __future__ import annotations

import contextlib
import signal
import threading
from collections.abc import Generator
from contextlib import contextmanager


@contextmanager
def interrupts_forwarded() -> Generator[None, None, None]:
    """Ignore SIGINT in this process while a child process runs.

    The terminal delivers Ctrl+C to the whole foreground process group, so the
    child receives it directly. Ignoring it here keeps the parent alive long
    enough to report the child's exit status.

    On enter: installs SIG_IGN for SIGINT (main thread only).
    On exit:  restores the previous handler unconditionally.

    Example::

        with interrupts_forwarded():
            returncode = subprocess.run(command).returncode

    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    previous = signal.signal(signal.SIGINT, signal.SIG_IGN)
    try:
        yield
    finally:
        with contextlib.suppress(ValueError, TypeError):
            signal.signal(signal.SIGINT, previous)


def child_exit_status(returncode: int) -> int:
    """Return the exit status to propagate for a child's return code.

    A child killed by signal N reports ``-N``; shells report ``128 + N``.
    """
    if returncode < 0:
        return 128 + (-returncode)
    return returncode
