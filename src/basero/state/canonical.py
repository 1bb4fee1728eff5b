"""
Deterministic canonical encoding primitives.

Used for message ids, snapshot commitments, and anything else that two ledger
instances must hash identically.
"""

from __future__ import annotations

import hashlib
import json
import re
from typing import Any


CANONICAL_ENCODING_VERSION = 1

_HEX32_RE = re.compile(r"^0x[0-9a-f]{64}$")


def has_surrogates(s: str) -> bool:
    return any(0xD800 <= ord(ch) <= 0xDFFF for ch in s)


def _reject_surrogates(s: str) -> None:
    # lone surrogates cannot be encoded as UTF-8
    if has_surrogates(s):
        raise TypeError("surrogate code points are not allowed in canonical encoding")


def _reject_floats(value: Any) -> None:
    if isinstance(value, float):
        raise TypeError("floats are not allowed in canonical encoding")
    if isinstance(value, str):
        _reject_surrogates(value)
    if isinstance(value, dict):
        for k, v in value.items():
            if not isinstance(k, str):
                raise TypeError("dict keys must be str for canonical encoding")
            _reject_surrogates(k)
            _reject_floats(v)
    elif isinstance(value, (list, tuple)):
        for item in value:
            _reject_floats(item)


def canonical_json_bytes(value: Any) -> bytes:
    """
    Canonical JSON encoding for hashing.

    Rules:
    - UTF-8, sort_keys=True, no whitespace
    - allow_nan=False
    - floats rejected (to avoid representation ambiguity)
    - lone surrogates rejected in strings and keys
    """
    _reject_floats(value)
    text = json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )
    return text.encode("utf-8")


def sha256_hex(data: bytes) -> str:
    return "0x" + hashlib.sha256(data).hexdigest()


def domain_sep_bytes(label: str, version: int = 1) -> bytes:
    """
    Domain separation prefix, ASCII-only and NUL-terminated so concatenation
    is unambiguous.
    """
    if not isinstance(label, str) or not label:
        raise TypeError("label must be a non-empty str")
    if "\x00" in label or not label.isascii():
        raise ValueError("label must be ASCII without NUL")
    if not isinstance(version, int) or isinstance(version, bool) or version <= 0:
        raise ValueError("version must be a positive int")
    return b"basero:" + label.encode("ascii") + b":v" + str(version).encode("ascii") + b"\x00"


def digest_hex(label: str, value: Any, *, version: int = 1) -> str:
    """``sha256(domain_sep(label) || canonical_json(value))`` as 0x-hex."""
    return sha256_hex(domain_sep_bytes(label, version) + canonical_json_bytes(value))


def is_hex32(value: Any) -> bool:
    return isinstance(value, str) and bool(_HEX32_RE.fullmatch(value))
