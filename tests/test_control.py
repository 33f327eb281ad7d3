import io
import threading
import time

import numpy as np

from control import KEY_HELP, CTRL_C, CTRL_X, Console, KeyListener, run_race
from sampled_range import gap_range, length_range
from serial_transport import TransportWriteError
from transmit_loop import LoopState, TransmissionConfig, TransmissionLoop

from fakes import FakeTransport, StalledTransport


def make_loop(config, transport, cancel):
    records = []
    errors = []
    loop = TransmissionLoop(
        config,
        transport,
        cancel,
        on_record=records.append,
        on_error=errors.append,
        rng=np.random.default_rng(7),
    )
    return loop, records, errors


def quiet_listener(cancel):
    finished = threading.Event()
    listener = KeyListener(cancel, on_redraw=lambda: None, stdin=io.StringIO())

    def run():
        listener.run()
        finished.set()

    return run, finished


def test_exhausted_loop_cancels_listener():
    cancel = threading.Event()
    config = TransmissionConfig(b"\x01", length_range(1), gap_range(0.0), repeat_count=3)
    transport = FakeTransport()
    loop, records, _ = make_loop(config, transport, cancel)
    listener_run, listener_done = quiet_listener(cancel)

    failure = run_race(loop, listener_run, cancel)

    assert failure is None
    assert len(transport.writes) == 3
    assert loop.outcome is LoopState.EXHAUSTED
    assert cancel.is_set()
    assert listener_done.is_set()


def test_listener_stop_drains_loop():
    cancel = threading.Event()
    config = TransmissionConfig(b"\x01", length_range(1), gap_range(0.01), repeat_count=-1)
    transport = FakeTransport()
    loop, records, _ = make_loop(config, transport, cancel)

    def listener_run():
        # behaves like a Ctrl-C keypress arriving after a few transmissions
        while len(records) < 3:
            cancel.wait(0.005)
        cancel.set()

    failure = run_race(loop, listener_run, cancel)

    assert failure is None
    assert loop.state is LoopState.TERMINATED
    assert loop.outcome is LoopState.CANCELLED
    assert len(transport.writes) >= 3
    assert transport.closed


def test_stop_aborts_stalled_write():
    cancel = threading.Event()
    config = TransmissionConfig(b"\x01\x02", length_range(2), gap_range(0.0), repeat_count=-1)
    transport = StalledTransport(stall_s=3.0)
    loop, records, _ = make_loop(config, transport, cancel)

    def listener_run():
        transport.writing.wait(1.0)
        time.sleep(0.2)
        cancel.set()

    started = time.monotonic()
    failure = run_race(loop, listener_run, cancel)
    elapsed = time.monotonic() - started

    assert failure is None
    assert elapsed < 1.0
    assert transport.cancels == 1
    assert loop.outcome is LoopState.CANCELLED
    assert [r.bytes_sent for r in records] == [0]
    assert transport.closed


def test_exhausted_loop_is_not_aborted():
    cancel = threading.Event()
    config = TransmissionConfig(b"\x01", length_range(1), gap_range(0.0), repeat_count=2)
    transport = FakeTransport()
    loop, _, _ = make_loop(config, transport, cancel)
    listener_run, _ = quiet_listener(cancel)

    run_race(loop, listener_run, cancel)

    assert loop.outcome is LoopState.EXHAUSTED
    assert transport.cancels == 0


def test_write_failure_cancels_listener():
    cancel = threading.Event()
    config = TransmissionConfig(b"\x01", length_range(1), gap_range(0.0), repeat_count=-1)
    transport = FakeTransport(fail_on_write=2)
    loop, records, errors = make_loop(config, transport, cancel)
    listener_run, listener_done = quiet_listener(cancel)

    failure = run_race(loop, listener_run, cancel)

    assert failure is None
    assert len(transport.writes) == 1
    assert isinstance(loop.error, TransportWriteError)
    assert errors == [loop.error]
    assert listener_done.is_set()


def test_listener_crash_is_reported_and_loop_unwinds():
    cancel = threading.Event()
    config = TransmissionConfig(b"\x01", length_range(1), gap_range(0.01), repeat_count=-1)
    loop, _, _ = make_loop(config, FakeTransport(), cancel)
    reported = []

    def listener_run():
        raise RuntimeError("terminal went away")

    failure = run_race(loop, listener_run, cancel, report_error=reported.append)

    assert isinstance(failure, RuntimeError)
    assert reported == [failure]
    assert loop.state is LoopState.TERMINATED
    assert loop.outcome is LoopState.CANCELLED


def test_loop_crash_is_reported():
    cancel = threading.Event()
    config = TransmissionConfig(b"\x01", length_range(1), gap_range(0.0), repeat_count=-1)

    class BrokenTransport(FakeTransport):
        def write(self, data):
            raise OSError("unexpected")

    loop, _, _ = make_loop(config, BrokenTransport(), cancel)
    listener_run, listener_done = quiet_listener(cancel)
    reported = []

    failure = run_race(loop, listener_run, cancel, report_error=reported.append)

    assert isinstance(failure, OSError)
    assert reported == [failure]
    assert loop.state is LoopState.TERMINATED
    assert listener_done.is_set()


def test_key_handling():
    cancel = threading.Event()
    redraws = []
    listener = KeyListener(cancel, on_redraw=lambda: redraws.append(1), stdin=io.StringIO())

    listener.handle_key("a")
    listener.handle_key(CTRL_X)
    assert redraws == [1]
    assert not cancel.is_set()

    listener.handle_key(CTRL_C)
    assert cancel.is_set()


def test_console_redraw_prints_header_and_help():
    out = io.StringIO()
    console = Console(header=lambda: ["Port:          loop://"], stream=out)
    console.redraw()
    console.line("progress")

    text = out.getvalue()
    assert "\x1b[2J" not in text
    assert text.startswith("Port:          loop://\n")
    for help_line in KEY_HELP:
        assert help_line in text
    assert text.endswith("progress\n")
