"""Serial byte sink used by the traffic generator.

Wraps pyserial so the transmission loop only has to deal with ``open()``,
``write()``, ``cancel()`` and ``close()`` and a small exception hierarchy.
Any name accepted by ``serial.serial_for_url`` works as a port, including
``loop://`` for a loopback port without hardware.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import serial


DEFAULT_BAUD = 1000000
DEFAULT_DATA_BITS = 8
DEFAULT_WRITE_TIMEOUT_S = 2.0

PARITIES = {
    "none": serial.PARITY_NONE,
    "even": serial.PARITY_EVEN,
    "odd": serial.PARITY_ODD,
    "mark": serial.PARITY_MARK,
    "space": serial.PARITY_SPACE,
}
STOP_BITS = {
    "1": serial.STOPBITS_ONE,
    "1.5": serial.STOPBITS_ONE_POINT_FIVE,
    "2": serial.STOPBITS_TWO,
}
DATA_BITS = (5, 6, 7, 8)
FLOW_CONTROLS = ("none", "rtscts", "xonxoff", "dsrdtr")


class TransportError(RuntimeError):
    pass


class TransportOpenError(TransportError):
    pass


class TransportWriteError(TransportError):
    pass


@dataclass
class LineSettings:
    port: str
    baudrate: int = DEFAULT_BAUD
    data_bits: int = DEFAULT_DATA_BITS
    parity: str = "none"
    stop_bits: str = "1"
    flow_control: str = "none"
    write_timeout: Optional[float] = DEFAULT_WRITE_TIMEOUT_S

    def describe(self) -> str:
        parity = self.parity[0].upper()
        return f"{self.data_bits}{parity}{self.stop_bits}, flow control {self.flow_control}"


class SerialTransport:
    def __init__(self, settings: LineSettings):
        self.settings = settings
        self._serial: Optional[serial.SerialBase] = None
        self._cancel_requested = False

    @property
    def serial(self) -> Optional[serial.SerialBase]:
        return self._serial

    @property
    def is_open(self) -> bool:
        return self._serial is not None and self._serial.is_open

    def open(self) -> None:
        s = self.settings
        try:
            port = serial.serial_for_url(s.port, do_not_open=True)
            port.baudrate = s.baudrate
            port.bytesize = s.data_bits
            port.parity = PARITIES[s.parity]
            port.stopbits = STOP_BITS[s.stop_bits]
            port.rtscts = s.flow_control == "rtscts"
            port.xonxoff = s.flow_control == "xonxoff"
            port.dsrdtr = s.flow_control == "dsrdtr"
            port.write_timeout = s.write_timeout
            port.open()
        except (serial.SerialException, ValueError, KeyError) as exc:
            raise TransportOpenError(f"Could not open serial port '{s.port}': {exc}") from exc
        self._serial = port
        self._cancel_requested = False

    def write(self, data: bytes) -> int:
        if self._serial is None:
            raise TransportWriteError("Serial port is not open")
        try:
            written = self._serial.write(data)
        except serial.SerialException as exc:
            raise TransportWriteError(
                f"Write of {len(data)} bytes to '{self.settings.port}' failed: {exc}"
            ) from exc

        if written is not None and written != len(data):
            if self._cancel_requested:
                return written
            raise TransportWriteError(
                f"Short write to '{self.settings.port}': requested={len(data)}, written={written}"
            )
        return len(data)

    def cancel(self) -> None:
        """Abort a write in progress where the port type supports it.

        The aborted write returns the bytes written so far instead of
        failing. Ports without `cancel_write` (e.g. `loop://`) finish the
        write on their own within the write timeout.
        """
        self._cancel_requested = True
        cancel_write = getattr(self._serial, "cancel_write", None)
        if cancel_write is None:
            return
        try:
            cancel_write()
        except OSError:
            # port was closed by the writer in the meantime
            pass

    def close(self) -> None:
        if self._serial is not None:
            try:
                self._serial.close()
            finally:
                self._serial = None
