"""Console output, interactive key handling and the stop race.

The transmission loop and the key listener run in their own threads and share
one ``threading.Event`` as the stop signal. Whichever side finishes first sets
it. The supervisor then always waits for the transmission loop to finish so no
write is left dangling; the listener is only given a short grace period.
"""

from __future__ import annotations

import os
import shutil
import sys
import threading
from typing import Callable, List, Optional

from transmit_loop import TransmissionLoop, format_error_block


KEY_HELP = ["Ctrl-C to quit", "Ctrl-X to clear screen", ""]
CTRL_C = "\x03"
CTRL_X = "\x18"
POLL_INTERVAL_S = 0.1
LISTENER_JOIN_TIMEOUT_S = 1.0


class Console:
    """Serializes output from the loop and listener threads."""

    def __init__(self, header: Callable[[], List[str]] = list, stream=None):
        self.header = header
        self.stream = stream if stream is not None else sys.stdout
        self._lock = threading.Lock()

    def line(self, text: str = "") -> None:
        with self._lock:
            print(text, file=self.stream, flush=True)

    def error(self, exc: BaseException) -> None:
        self.line(format_error_block(exc))

    def redraw(self, clear: bool = True) -> None:
        with self._lock:
            if clear and self.stream.isatty():
                # ANSI: erase display, cursor home
                self.stream.write("\x1b[2J\x1b[H")
            for text in self.header() + KEY_HELP:
                print(text, file=self.stream)
            self.stream.flush()


def terminal_width(default: int = 80) -> int:
    return shutil.get_terminal_size((default, 24)).columns


class KeyListener:
    """Reads control keys until stopped.

    Ctrl-C requests a stop, Ctrl-X redraws the screen. When stdin is not a
    terminal there are no keys to read and the listener just waits for the
    stop signal.
    """

    def __init__(self, cancel: threading.Event, on_redraw: Callable[[], None], stdin=None):
        self.cancel = cancel
        self.on_redraw = on_redraw
        self.stdin = stdin if stdin is not None else sys.stdin

    def run(self) -> None:
        if not self._interactive():
            self.cancel.wait()
            return
        if os.name == "nt":
            self._run_windows()
        else:
            self._run_posix()

    def _interactive(self) -> bool:
        try:
            return self.stdin.isatty()
        except (AttributeError, ValueError):
            return False

    def handle_key(self, key: str) -> None:
        if key == CTRL_C:
            self.cancel.set()
        elif key == CTRL_X:
            self.on_redraw()

    def _run_posix(self) -> None:
        import select
        import termios
        import tty

        fd = self.stdin.fileno()
        saved = termios.tcgetattr(fd)
        try:
            # cbreak keeps ISIG, so Ctrl-C still arrives as SIGINT
            tty.setcbreak(fd)
            while not self.cancel.is_set():
                ready, _, _ = select.select([fd], [], [], POLL_INTERVAL_S)
                if ready:
                    self.handle_key(os.read(fd, 1).decode(errors="ignore"))
        finally:
            termios.tcsetattr(fd, termios.TCSADRAIN, saved)

    def _run_windows(self) -> None:
        import msvcrt

        while not self.cancel.is_set():
            if msvcrt.kbhit():
                self.handle_key(msvcrt.getwch())
            else:
                self.cancel.wait(POLL_INTERVAL_S)


def run_race(
    loop: TransmissionLoop,
    listener_run: Callable[[], None],
    cancel: threading.Event,
    report_error: Callable[[BaseException], None] = lambda e: print(format_error_block(e)),
) -> Optional[BaseException]:
    """Race the listener against the loop and drain the loop.

    Returns the first unexpected exception raised by either side, if any.
    Transport errors are handled inside the loop and do not show up here.
    """
    failures: List[BaseException] = []

    def guarded(target: Callable[[], None]) -> Callable[[], None]:
        def runner() -> None:
            try:
                target()
            except Exception as exc:  # reported here so the sibling can unwind
                failures.append(exc)
                report_error(exc)
            finally:
                cancel.set()

        return runner

    loop_thread = threading.Thread(target=guarded(loop.run), name="transmission", daemon=True)
    listener_thread = threading.Thread(target=guarded(listener_run), name="key-listener", daemon=True)
    loop_thread.start()
    listener_thread.start()

    # Poll so the main thread stays responsive to SIGINT.
    while not cancel.wait(POLL_INTERVAL_S):
        pass

    if loop_thread.is_alive():
        loop.abort_write()
    while loop_thread.is_alive():
        loop_thread.join(POLL_INTERVAL_S)
    listener_thread.join(LISTENER_JOIN_TIMEOUT_S)

    return failures[0] if failures else None
