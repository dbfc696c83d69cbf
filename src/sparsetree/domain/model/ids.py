"""Canonical person identifiers.

Canonical ids are ULIDs: a 48-bit millisecond timestamp followed by 80 random bits,
rendered as 26 Crockford base32 characters so that they sort by creation time.
"""

from __future__ import annotations

import os
import re
from datetime import UTC, datetime
from typing import Final

_CROCKFORD32: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_CANONICAL_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^[0-7][0-9A-HJKMNP-TV-Z]{25}$", re.IGNORECASE
)


def _encode_crockford_base32(data: bytes) -> str:
    n = int.from_bytes(data, "big")
    chars: list[str] = []
    for _ in range(26):
        n, rem = divmod(n, 32)
        chars.append(_CROCKFORD32[rem])
    return "".join(reversed(chars))


def new_canonical_id(*, now: datetime | None = None) -> str:
    moment = now or datetime.now(UTC)
    ts_ms = int(moment.timestamp() * 1000)
    return _encode_crockford_base32(ts_ms.to_bytes(6, "big") + os.urandom(10))


def is_canonical_id(value: str) -> bool:
    return bool(_CANONICAL_PATTERN.match(value))
