"""Internal helpers shared across kvtx modules."""
import base64
import hashlib
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import orjson


def now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def now_iso() -> str:
    """Current UTC time in ISO-8601 format, as stored in item attributes."""
    return now().isoformat()


def _encode_key_value(value: Any) -> Any:
    """
    ``orjson`` fallback for key values that are not plain JSON.

    Numbers arriving as ``Decimal`` (as document-store clients return them)
    and binary values are written in a tagged form, so ``Decimal("7")`` and
    ``"7"`` stay distinct while ``Decimal("7")`` and ``Decimal("7.0")`` match.

    :raises TypeError: Unsupported key value type
    """
    if isinstance(value, Decimal):
        return {'N': str(value.normalize())}
    if isinstance(value, (bytes, bytearray)):
        return {'B': base64.b64encode(bytes(value)).decode('ascii')}
    raise TypeError(f"Unsupported key value type: {type(value).__name__}")


def canonical_key(key: dict[str, Any]) -> str:
    """
    Encode a primary key as canonical JSON.

    Attribute order does not matter: ``{"a": 1, "b": 2}`` and
    ``{"b": 2, "a": 1}`` encode identically.

    :param key: Primary key attribute mapping
    :returns: JSON string with sorted keys
    """
    return orjson.dumps(key, default=_encode_key_value, option=orjson.OPT_SORT_KEYS).decode('utf-8')


def key_digest(key: dict[str, Any]) -> str:
    """SHA-256 hex digest of the canonical key encoding."""
    return hashlib.sha256(canonical_key(key).encode('utf-8')).hexdigest()
