"""Hex string helpers for payload input and display."""

from __future__ import annotations

import re
from typing import Iterable, Iterator, List, Optional, Sequence, TypeVar


HEX_DIGITS = "0123456789abcdefABCDEF"
# Hex digits, optionally grouped with common separators ("01 02", "01:02", "0102").
HEX_DATA_REGEX = re.compile(r"^[\s:,_\-]*[0-9a-fA-F](?:[0-9a-fA-F\s:,_\-]*)$")

T = TypeVar("T")


def is_hex_data(text: str) -> bool:
    return bool(HEX_DATA_REGEX.match(text))


def bin_to_hex(data: Optional[Iterable[int]], delimiter: str = "") -> str:
    if data is None:
        return ""
    return delimiter.join(f"{b:02X}" for b in data)


def hex_to_bin(text: str) -> bytes:
    """Decode hex text, skipping any non-hex characters.

    A trailing unpaired nibble is discarded and reported with a warning.
    """
    nibbles = [int(c, 16) for c in text if c in HEX_DIGITS]
    if len(nibbles) % 2:
        print(
            f"WARNING: Hex data string is not even. "
            f"The last nibble (0x{nibbles[-1]:X}) will be discarded."
        )
        nibbles.pop()
    return bytes((hi << 4) | lo for hi, lo in zip(nibbles[0::2], nibbles[1::2]))


def chunked(seq: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    if size <= 0:
        raise ValueError("chunk size must be > 0")
    for start in range(0, len(seq), size):
        yield seq[start : start + size]


def wrap_hex(data: bytes, width: int, indent: int = 0) -> List[str]:
    # Each byte takes "XX " on screen.
    per_line = max(1, (width - indent) // 3 - 2)
    return [bin_to_hex(chunk, " ") for chunk in chunked(data, per_line)]
