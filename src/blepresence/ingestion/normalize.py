"""Normalization helpers.

Centralizes defensive parsing of report fields and the decoding of legacy
``\\uXXXX`` escaped text found in older persisted documents.
"""

from __future__ import annotations

import math
import re
from collections.abc import Callable, Mapping
from typing import Any, TypeAlias

JsonValue: TypeAlias = "str | int | float | bool | None | list[JsonValue] | dict[str, JsonValue]"

# A surrogate pair is decoded as one code point; lone surrogates are left escaped.
_ESCAPE_RE = re.compile(
    r"\\u([dD][89abAB][0-9a-fA-F]{2})\\u([dD][c-fC-F][0-9a-fA-F]{2})|\\u([0-9a-fA-F]{4})"
)
_SURROGATE_RE = re.compile("[\ud800-\udfff]")


def safe_float(value: Any) -> float | None:
    if value is None or value == "" or value == "--" or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def safe_int(value: Any) -> int | None:
    parsed = safe_float(value)
    if parsed is None:
        return None
    return int(round(parsed))


def safe_str(value: Any) -> str | None:
    """Stripped text, or ``None`` when empty.

    Lone surrogates (valid in JSON, not encodable as UTF-8) become U+FFFD.
    """
    if value is None:
        return None
    text = _SURROGATE_RE.sub("\ufffd", str(value)).strip()
    return text if text else None


def resolve_rssi(value: Any) -> int | None:
    """Collapse a reported signal strength into a single dBm integer.

    Receivers send either a bare number or a structured reading such as
    ``{"average": -61.5, "current": -64}``. The average is preferred, then
    the current reading, then the value itself. Anything that does not
    yield a finite number resolves to ``None``.
    """

    if isinstance(value, Mapping):
        for key in ("average", "current"):
            resolved = safe_int(value.get(key))
            if resolved is not None:
                return resolved
        return None
    return safe_int(value)


def _replace_escape(match: re.Match[str]) -> str:
    high, low, single = match.groups()
    if high is not None:
        return chr(0x10000 + ((int(high, 16) - 0xD800) << 10) + (int(low, 16) - 0xDC00))
    code = int(single, 16)
    if 0xD800 <= code <= 0xDFFF:
        return match.group(0)
    return chr(code)


def decode_unicode(text: Any) -> Any:
    """Decode literal ``\\uXXXX`` escapes in *text*.

    Non-string input is returned unchanged.
    """
    if not isinstance(text, str) or "\\u" not in text:
        return text
    return _ESCAPE_RE.sub(_replace_escape, text)


def map_strings(value: JsonValue, transform: Callable[[str], str]) -> JsonValue:
    """Apply *transform* to every string leaf of a JSON-like structure.

    - Strings: transformed.
    - Numbers, booleans, ``None``: returned as-is.
    - Sequences: new list with every element mapped.
    - Mappings: new dict with every value mapped; keys are kept.
    """

    if isinstance(value, str):
        return transform(value)
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, Mapping):
        return {key: map_strings(item, transform) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [map_strings(item, transform) for item in value]
    return value


def decode_tree(value: JsonValue) -> JsonValue:
    """Decode legacy escaped text everywhere inside *value*."""
    return map_strings(value, decode_unicode)
