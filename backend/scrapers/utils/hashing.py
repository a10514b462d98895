"""
Canonical JSON encoding and hashing.

- canonical_json_bytes: exact, lossless serialization used for staged raw
  payloads (same content -> byte-identical object)
- compute_json_hash: SHA256 over a normalized form, used to detect whether a
  curated record actually changed
"""
import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any


def _json_default(value: Any):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value.normalize())
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def canonical_json_bytes(data: Any) -> bytes:
    """
    Serialize data to canonical UTF-8 JSON.

    Keys are sorted and separators fixed; values are not altered, so decoding
    returns the original payload.
    """
    return json.dumps(
        data,
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
        default=_json_default,
    ).encode("utf-8")


def normalize_json_for_hash(data: Any) -> Any:
    """
    Normalize JSON data for consistent hashing.

    - Sorts dictionary keys and drops None values
    - Converts dates and decimals to strings
    - Collapses whitespace in strings
    """
    if data is None:
        return None

    if isinstance(data, dict):
        return {
            k: normalize_json_for_hash(v)
            for k, v in sorted(data.items())
            if v is not None
        }

    if isinstance(data, (list, tuple)):
        return [normalize_json_for_hash(item) for item in data]

    if isinstance(data, (datetime, date)):
        return data.isoformat()

    if isinstance(data, Decimal):
        return str(data.normalize())

    if isinstance(data, float):
        return round(data, 10)

    if isinstance(data, str):
        return " ".join(data.split())

    return data


def compute_json_hash(data: Any) -> str:
    """Compute the 64-character SHA256 hex digest of normalized JSON data."""
    normalized = normalize_json_for_hash(data)
    json_str = json.dumps(normalized, sort_keys=True, ensure_ascii=False)
    return hashlib.sha256(json_str.encode("utf-8")).hexdigest()
