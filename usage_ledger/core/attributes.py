"""
OTLP attribute decoding.

Turns an OTLP-JSON attribute list into a plain key -> scalar mapping.
"""

from typing import Any, Dict, Iterable, Optional, Tuple

from usage_ledger.storage.models import AttributeValue

# Decoded as (present, value); present=False means nothing decodable.
DecodedValue = Tuple[bool, Optional[AttributeValue]]

_ABSENT: DecodedValue = (False, None)


def decode_any_value(value: Any) -> DecodedValue:
    """Decode one OTLP ``AnyValue`` object.

    Falsy scalars (``False``, ``0``, ``""``) are present values; only a
    missing or undecodable variant is reported as absent.

    Args:
        value: The ``value`` object of an attribute entry

    Returns:
        Tuple of (present, decoded scalar)
    """
    if not isinstance(value, dict):
        return _ABSENT

    if "stringValue" in value and value["stringValue"] is not None:
        return True, str(value["stringValue"])

    if "intValue" in value and value["intValue"] is not None:
        # proto3 JSON encodes int64 as a string
        try:
            return True, int(value["intValue"])
        except (TypeError, ValueError):
            return _ABSENT

    if "doubleValue" in value and value["doubleValue"] is not None:
        try:
            return True, float(value["doubleValue"])
        except (TypeError, ValueError):
            return _ABSENT

    if "boolValue" in value and value["boolValue"] is not None:
        raw = value["boolValue"]
        if isinstance(raw, bool):
            return True, raw
        if isinstance(raw, str) and raw.lower() in ("true", "false"):
            return True, raw.lower() == "true"
        return _ABSENT

    return _ABSENT


def extract_attributes(attributes: Optional[Iterable[Any]]) -> Dict[str, AttributeValue]:
    """Convert an OTLP attribute list into a key -> scalar mapping.

    Entries without a key or without a decodable value are skipped.
    When a key repeats, the last occurrence wins.

    Args:
        attributes: List of ``{"key": ..., "value": {...}}`` entries, or None

    Returns:
        Mapping of attribute key to decoded value (empty if no input)
    """
    result: Dict[str, AttributeValue] = {}
    if not attributes:
        return result

    for entry in attributes:
        if not isinstance(entry, dict):
            continue
        key = entry.get("key")
        if not key or not isinstance(key, str):
            continue
        present, decoded = decode_any_value(entry.get("value"))
        if present:
            result[key] = decoded
    return result
