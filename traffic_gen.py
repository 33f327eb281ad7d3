#!/usr/bin/env python3
"""Serial traffic generator for stress-testing bus receivers and analyzers.

Repeatedly writes a payload to a serial port with optionally randomized
length and optionally randomized gaps:
- `--data`   : base payload in hex, e.g. `01020E0F` or `01 02 0E 0F`
- `--length` : payload length `N` or `FROM:TO` (bytes). Shorter lengths
               truncate the data, longer lengths pad it with random bytes.
- `--gap`    : pause between transmissions `MS` or `FROM:TO` (milliseconds)
- `--repeat` : number of transmissions, -1 for infinite

Example:
  python3 traffic_gen.py /dev/ttyUSB0 --baud 115200 --data AB0C --length 4:16 --gap 5:50 --repeat -1

Press Ctrl-C to stop, Ctrl-X to clear the screen.
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from typing import Callable, List, Optional, Tuple, TypeVar

from control import Console, KeyListener, run_race, terminal_width
from hexdata import hex_to_bin, is_hex_data, wrap_hex
from sampled_range import (
    SampledRange,
    format_duration,
    gap_range,
    length_range,
)
from serial_transport import (
    DATA_BITS,
    DEFAULT_BAUD,
    DEFAULT_WRITE_TIMEOUT_S,
    FLOW_CONTROLS,
    PARITIES,
    STOP_BITS,
    LineSettings,
    SerialTransport,
)
from transmit_loop import (
    DEFAULT_GAP_S,
    TransmissionConfig,
    TransmissionLoop,
    format_progress,
)


DEFAULT_REPEATS = 1
HEADER_ALIGNMENT = 15

N = TypeVar("N", int, float)


class ConfigurationError(ValueError):
    pass


def parse_range_text(text: str, parse_scalar: Callable[[str], N], name: str) -> Tuple[N, N]:
    parts = text.split(":")
    if len(parts) > 2:
        raise ConfigurationError(f"Invalid {name} argument '{text}'.")
    try:
        values = [parse_scalar(p.strip()) for p in parts]
    except ValueError as exc:
        raise ConfigurationError(f"Invalid {name} argument '{text}'.") from exc
    return values[0], values[-1]


def resolve_length(text: Optional[str], data_len: int) -> SampledRange[int]:
    """Build the payload length range; unset or negative means the data length."""
    if text is None:
        return length_range(data_len)

    low, high = parse_range_text(text, int, "length")
    if ":" not in text:
        return length_range(data_len if low < 0 else low)

    if low == high == 0:
        return length_range(0)
    if low < 0 or high < 1 or low > high:
        raise ConfigurationError(
            f"Invalid length range '{text}'. Expected FROM:TO with 0 <= FROM <= TO and TO >= 1."
        )
    return length_range(low, high)


def resolve_gap(text: Optional[str]) -> SampledRange[float]:
    if text is None:
        return gap_range(DEFAULT_GAP_S)

    low_ms, high_ms = parse_range_text(text, float, "gap")
    if low_ms < 0 or high_ms < 0 or low_ms > high_ms:
        raise ConfigurationError(
            f"Invalid gap '{text}'. Expected MS or FROM:TO in milliseconds with 0 <= FROM <= TO."
        )
    return gap_range(low_ms / 1000.0, high_ms / 1000.0)


def resolve_data(text: Optional[str]) -> bytes:
    if text is None:
        return b""
    if not is_hex_data(text):
        raise ConfigurationError(f"Invalid hex data string '{text}'.")
    return hex_to_bin(text)


def build_config(args: argparse.Namespace) -> Tuple[LineSettings, TransmissionConfig]:
    port = args.port or args.port_arg
    if not port:
        raise ConfigurationError("A serial port is required, e.g. COM3 or /dev/ttyUSB0.")
    if args.port and args.port_arg and args.port != args.port_arg:
        raise ConfigurationError(f"Conflicting ports '{args.port_arg}' and '{args.port}'.")
    if args.baud <= 0:
        raise ConfigurationError(f"Invalid baud rate argument '{args.baud}'.")
    if args.repeat < -1:
        raise ConfigurationError(f"Invalid repeats argument '{args.repeat}'.")
    if args.write_timeout < 0:
        raise ConfigurationError("--write-timeout must be >= 0")

    data = resolve_data(args.data)
    length = resolve_length(args.length, len(data))
    gap = resolve_gap(args.gap)

    if length.high == 0:
        print("WARNING: Payload length is 0. Nothing will be written to the port.")

    settings = LineSettings(
        port=port,
        baudrate=args.baud,
        data_bits=args.data_bits,
        parity=args.parity,
        stop_bits=args.stop_bits,
        flow_control=args.flow_control,
        write_timeout=args.write_timeout or None,
    )
    config = TransmissionConfig(
        base_payload=data,
        length=length,
        gap=gap,
        repeat_count=1 if args.repeat == 0 else args.repeat,
        show_payload=args.show_data,
        seed=args.seed,
    )
    return settings, config


def build_header(settings: LineSettings, config: TransmissionConfig, width: int) -> List[str]:
    def row(label: str, value: str) -> str:
        return f"{label + ':':<{HEADER_ALIGNMENT}}{value}"

    repeats = "infinite" if config.repeat_count < 0 else str(config.repeat_count)
    data_lines = wrap_hex(config.base_payload, width, HEADER_ALIGNMENT) or ["(none)"]
    indent = " " * HEADER_ALIGNMENT

    return [
        row("Port", settings.port),
        row("Baud rate", str(settings.baudrate)),
        row("Line", settings.describe()),
        row("Repeats", repeats),
        row("Gap", config.gap.describe(format_duration)),
        row("Length", f"{config.length.describe()} bytes"),
        row("Data", f"\n{indent}".join(data_lines)),
    ]


def install_stop_handlers(cancel: threading.Event) -> None:
    def _handle_stop(signum, frame):  # noqa: ANN001, ARG001
        cancel.set()

    signal.signal(signal.SIGINT, _handle_stop)
    signal.signal(signal.SIGTERM, _handle_stop)


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="Send a payload to a serial port repeatedly, with random lengths and gaps"
    )

    p.add_argument(
        "port_arg",
        nargs="?",
        metavar="PORT",
        help="Serial port name or pyserial URL, e.g. COM3, /dev/ttyUSB0, loop://",
    )
    p.add_argument("--port", type=str, default=None, help="Same as PORT")
    p.add_argument("--baud", type=int, default=DEFAULT_BAUD, help="Baud rate (default: %(default)s)")
    p.add_argument(
        "--data-bits",
        type=int,
        choices=DATA_BITS,
        default=8,
        help="Data bits per character (default: %(default)s)",
    )
    p.add_argument(
        "--parity",
        choices=sorted(PARITIES),
        default="none",
        help="Parity (default: %(default)s)",
    )
    p.add_argument(
        "--stop-bits",
        choices=sorted(STOP_BITS),
        default="1",
        help="Stop bits (default: %(default)s)",
    )
    p.add_argument(
        "--flow-control",
        choices=FLOW_CONTROLS,
        default="none",
        help="Flow control (default: %(default)s)",
    )
    p.add_argument(
        "--write-timeout",
        type=float,
        default=DEFAULT_WRITE_TIMEOUT_S,
        help="Seconds before a blocked write fails, 0 = wait forever (default: %(default)s)",
    )

    p.add_argument("--data", type=str, default=None, help="Data to send in hex, e.g. 01020E0F")
    p.add_argument(
        "--length",
        type=str,
        default=None,
        help="Payload length N or FROM:TO in bytes; data is truncated or padded with random "
        "bytes (default: length of --data)",
    )
    p.add_argument(
        "--gap",
        type=str,
        default=None,
        help=f"Delay between transmissions, MS or FROM:TO in milliseconds "
        f"(default: {DEFAULT_GAP_S * 1000:.0f})",
    )
    p.add_argument(
        "--repeat",
        type=int,
        default=DEFAULT_REPEATS,
        help="Number of transmissions, -1 for infinite (default: %(default)s)",
    )
    p.add_argument("--show-data", action="store_true", help="Print every payload sent in hex")
    p.add_argument("--seed", type=int, default=None, help="Random seed for reproducible runs")

    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)

    try:
        settings, config = build_config(args)
    except ConfigurationError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2

    cancel = threading.Event()
    console = Console(header=lambda: build_header(settings, config, terminal_width()))
    loop = TransmissionLoop(
        config,
        SerialTransport(settings),
        cancel,
        on_record=lambda record: console.line(format_progress(record)),
        on_error=console.error,
    )
    listener = KeyListener(cancel, on_redraw=console.redraw)

    install_stop_handlers(cancel)
    console.redraw()

    failure = run_race(loop, listener.run, cancel, report_error=console.error)
    if loop.error is not None or failure is not None:
        return 1
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except KeyboardInterrupt:
        raise SystemExit(130)
