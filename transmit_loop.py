"""Transmission loop: builds payloads, applies gaps and writes to the transport.

Per iteration the loop
  1. stops if cancellation was requested,
  2. samples a target length and builds the payload (truncate or random pad),
  3. waits for the scheduled gap (never before the first transmission),
  4. stops if cancellation arrived during the wait,
  5. writes the payload (zero-length payloads are skipped),
  6. reports one progress record, including the next gap when it was re-drawn.

The loop runs until the repeat budget is used up, cancellation is observed or
the transport fails. Transport failures are reported and end the run; they
are never retried.
"""

from __future__ import annotations

import enum
import threading
import traceback
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

import numpy as np

from hexdata import bin_to_hex
from sampled_range import SampledRange, format_duration, gap_range
from serial_transport import TransportError


DEFAULT_GAP_S = 1.0
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


class LoopState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    # Cancellation arrived while a write was in flight; the write ends (or is
    # aborted by the transport) and is still reported before the loop stops.
    DRAINING = "draining"
    CANCELLED = "cancelled"
    EXHAUSTED = "exhausted"
    TERMINATED = "terminated"


@dataclass
class TransmissionConfig:
    base_payload: bytes
    length: SampledRange[int]
    gap: SampledRange[float] = field(default_factory=lambda: gap_range(DEFAULT_GAP_S))
    repeat_count: int = 1
    show_payload: bool = False
    seed: Optional[int] = None


@dataclass
class IterationRecord:
    index: int
    total: Optional[int]  # None means infinite
    bytes_sent: int
    next_pause: Optional[float] = None
    payload: Optional[bytes] = None
    timestamp: datetime = field(default_factory=datetime.now)


def normalize_repeats(repeat_count: int) -> Optional[int]:
    """Map the configured repeat count to a total, or None for infinite."""
    if repeat_count < 0:
        return None
    return max(1, repeat_count)


def build_payload(base: bytes, target_len: int, rng: np.random.Generator) -> bytes:
    if target_len < 0:
        raise ValueError(f"target_len must be >= 0, got {target_len}")
    if len(base) >= target_len:
        return bytes(base[:target_len])
    padding = rng.integers(0, 256, size=target_len - len(base), dtype=np.uint8)
    return bytes(base) + padding.tobytes()


class GapScheduler:
    """Decides the pause before each transmission.

    The first transmission is never delayed. With a constant gap the same
    pause is used every time. With a gap range the pause for the next
    iteration is drawn one iteration ahead so it can be reported before it
    is applied.
    """

    def __init__(self, gap: SampledRange[float], rng: np.random.Generator):
        self.gap = gap
        self.rng = rng
        self.scheduled_pause: Optional[float] = None if gap.is_range else gap.low

    def pause_before(self, index: int) -> float:
        if index <= 1:
            return 0.0
        if self.scheduled_pause is None:
            self.scheduled_pause = self.gap.sample(self.rng)
        return self.scheduled_pause

    def plan_next(self, more_remaining: bool) -> Optional[float]:
        """Draw the pause for the next iteration; returns it when it should be reported."""
        if not self.gap.is_range or not more_remaining:
            return None
        self.scheduled_pause = self.gap.sample(self.rng)
        return self.scheduled_pause


def format_progress(record: IterationRecord) -> str:
    stamp = record.timestamp.strftime(TIMESTAMP_FORMAT)[:-3]
    progress = f"({record.index})" if record.total is None else f"({record.index}/{record.total})"
    line = f"{stamp}: {progress} - Sent {record.bytes_sent} bytes."
    if record.next_pause is not None:
        line += f" Pause for {format_duration(record.next_pause)}."
    if record.payload is not None:
        line += f" Data: {bin_to_hex(record.payload, ' ')}"
    return line


def format_error_block(exc: BaseException) -> str:
    details = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)).rstrip()
    return f"\n\nERROR: {exc}\n\n{details}"


class TransmissionLoop:
    def __init__(
        self,
        config: TransmissionConfig,
        transport,
        cancel: threading.Event,
        on_record: Callable[[IterationRecord], None] = lambda r: print(format_progress(r)),
        on_error: Callable[[BaseException], None] = lambda e: print(format_error_block(e)),
        rng: Optional[np.random.Generator] = None,
    ):
        self.config = config
        self.transport = transport
        self.cancel = cancel
        self.on_record = on_record
        self.on_error = on_error
        self.rng = rng if rng is not None else np.random.default_rng(config.seed)
        self.gaps = GapScheduler(config.gap, self.rng)

        self.state = LoopState.IDLE
        self.outcome: Optional[LoopState] = None
        self.error: Optional[TransportError] = None
        self.total: Optional[int] = None
        self.index = 1

    @property
    def infinite(self) -> bool:
        return self.total is None

    def abort_write(self) -> None:
        """Ask the transport to abandon a write in progress, if any."""
        if self.state in (LoopState.RUNNING, LoopState.DRAINING):
            self.transport.cancel()

    def run(self) -> None:
        self.total = normalize_repeats(self.config.repeat_count)
        self.state = LoopState.RUNNING
        try:
            self.transport.open()
            try:
                while self.state in (LoopState.RUNNING, LoopState.DRAINING):
                    self._step()
            finally:
                self.transport.close()
        except TransportError as exc:
            self.error = exc
            self.on_error(exc)
        finally:
            self.outcome = self.state if self.error is None else None
            self.state = LoopState.TERMINATED

    def _step(self) -> None:
        if self.cancel.is_set():
            self.state = LoopState.CANCELLED
            return

        target_len = self.config.length.sample(self.rng)
        payload = build_payload(self.config.base_payload, target_len, self.rng)

        pause = self.gaps.pause_before(self.index)
        if (pause > 0 and self.cancel.wait(pause)) or self.cancel.is_set():
            self.state = LoopState.CANCELLED
            return

        sent = self.transport.write(payload) if payload else 0
        if self.cancel.is_set():
            self.state = LoopState.DRAINING

        more = (self.infinite or self.index < self.total) and not self.cancel.is_set()
        next_pause = self.gaps.plan_next(more)
        self.on_record(
            IterationRecord(
                index=self.index,
                total=self.total,
                bytes_sent=sent,
                next_pause=next_pause,
                payload=payload if self.config.show_payload else None,
            )
        )

        self.index += 1
        if not self.infinite and self.index > self.total:
            self.state = LoopState.EXHAUSTED
