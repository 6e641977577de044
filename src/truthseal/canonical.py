"""
Canonical JSON serialization for sealable content.

CRITICAL: The output of this module is a wire-level contract. Any
re-implementation (browser, CLI, other language) MUST produce byte-identical
output for the same content, otherwise digests will not match.

Rules:
- Object keys sorted lexicographically by Unicode code point, at every level
- No whitespace between tokens
- Numbers: shortest round-trip per ECMAScript NumberToString
- Strings: minimal escaping (control chars, backslash, double-quote),
  non-ASCII emitted as raw UTF-8
- null, true, false as literals
- Non-finite numbers and unknown types are rejected, never coerced
"""

import json
import math
from collections.abc import Mapping
from decimal import Decimal
from typing import Any

from .content import SealableContent
from .errors import InvalidContent


def canonical_json(value: Any) -> str:
    """
    Serialize a value to canonical JSON.

    Args:
        value: Any JSON-compatible value (dict, list, str, int, float, bool, None)

    Returns:
        Canonical JSON string with sorted keys and no whitespace

    Raises:
        InvalidContent: If the value contains a non-finite number, a non-string
            object key, or a type with no JSON representation
    """
    return _serialize_value(value)


def canonicalize(content: SealableContent | Mapping[str, Any]) -> bytes:
    """
    Derive the canonical form of sealable content.

    A mapping is parsed strictly into ``SealableContent`` first, so unknown
    or missing fields fail here rather than silently changing the hash input.

    Args:
        content: Sealable content or its wire mapping

    Returns:
        UTF-8 bytes of the canonical JSON of the sealable field set

    Raises:
        InvalidContent: If content is missing a required field or is malformed
    """
    if not isinstance(content, SealableContent):
        if not isinstance(content, Mapping):
            raise InvalidContent(
                f"Sealable content must be an object, got {type(content).__name__}"
            )
        content = SealableContent.from_dict(content)

    text = canonical_json(content.to_sealable_dict())
    try:
        return text.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise InvalidContent(f"Content is not encodable as UTF-8: {exc.reason}") from exc


def _serialize_value(value: Any) -> str:
    """Internal: serialize any value to canonical JSON."""
    if value is None:
        return "null"

    if isinstance(value, bool):
        # Must check bool before int (bool is subclass of int in Python)
        return "true" if value else "false"

    if isinstance(value, (int, float)):
        return _serialize_number(value)

    if isinstance(value, str):
        return _serialize_string(value)

    if isinstance(value, (list, tuple)):
        return _serialize_array(value)

    if isinstance(value, Mapping):
        return _serialize_object(value)

    raise InvalidContent(f"Unsupported value type for canonical JSON: {type(value).__name__}")


def _serialize_number(num: float | int) -> str:
    """
    Serialize number per ECMAScript NumberToString.

    Uses the shortest representation that round-trips.
    """
    if isinstance(num, float) and (math.isnan(num) or math.isinf(num)):
        raise InvalidContent(f"Non-finite number is not allowed: {num!r}")

    # Integer handling: avoid scientific notation for reasonable integers
    if isinstance(num, int) or num.is_integer():
        int_val = int(num)
        if abs(int_val) < 10**21:
            return str(int_val)

    # repr() yields the shortest round-trip digits; only the layout differs
    # from ECMAScript, which switches to exponent form outside [1e-7, 1e21).
    decimal = Decimal(repr(abs(float(num)))).normalize()
    _, digit_tuple, exponent = decimal.as_tuple()
    digits = "".join(str(d) for d in digit_tuple)
    k = len(digits)
    n = k + exponent
    sign = "-" if num < 0 else ""

    if k <= n <= 21:
        return sign + digits + "0" * (n - k)
    if 0 < n <= 21:
        return sign + digits[:n] + "." + digits[n:]
    if -6 < n <= 0:
        return sign + "0." + "0" * (-n) + digits

    e = n - 1
    e_text = ("+" if e >= 0 else "-") + str(abs(e))
    if k == 1:
        return f"{sign}{digits}e{e_text}"
    return f"{sign}{digits[0]}.{digits[1:]}e{e_text}"


def _serialize_string(text: str) -> str:
    """
    Serialize string with proper JSON escaping.

    json.dumps escapes control characters, backslash, and double-quote the
    same way JSON.stringify does; ensure_ascii=False keeps non-ASCII raw.
    """
    return json.dumps(text, ensure_ascii=False)


def _serialize_array(arr: list | tuple) -> str:
    """Serialize array with no whitespace."""
    items = [_serialize_value(item) for item in arr]
    return "[" + ",".join(items) + "]"


def _serialize_object(obj: Mapping) -> str:
    """
    Serialize object with sorted keys.

    Keys are sorted lexicographically by Unicode code point. Absent optional
    fields must already be dropped by the caller; None here means JSON null.
    """
    for key in obj:
        if not isinstance(key, str):
            raise InvalidContent(f"Object keys must be strings, got {type(key).__name__}")

    pairs = [
        _serialize_string(key) + ":" + _serialize_value(obj[key])
        for key in sorted(obj.keys())
    ]
    return "{" + ",".join(pairs) + "}"
