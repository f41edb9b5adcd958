"""Cache key builders for endpoint responses.

Rules:
- A key is the endpoint prefix, plus a hash of the call input when there is one.
- Inputs are serialized with sorted keys so equal inputs give equal keys.
- The hash is short and non-cryptographic; callers keep the serialized
  input next to the value to detect collisions.
"""

from __future__ import annotations

import json
from typing import Any, Optional

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def serialize_input(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def hash_string(text: str) -> str:
    """32-bit rolling hash (h * 31 + unit over UTF-16 code units), base-36 of its magnitude."""
    encoded = text.encode("utf-16-le")
    h = 0
    for i in range(0, len(encoded), 2):
        unit = encoded[i] | (encoded[i + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return to_base36(abs(h))


def build_key(prefix: str, call_input: Optional[Any] = None) -> str:
    if call_input is None:
        return prefix
    return f"{prefix}:{hash_string(serialize_input(call_input))}"


__all__ = ["build_key", "hash_string", "serialize_input", "to_base36"]
