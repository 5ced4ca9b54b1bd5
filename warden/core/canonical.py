"""
Canonical serialization for payload and meta columns.

All structured data written to the event log or record store goes through
these functions so identical values always produce identical text.
"""

import json
from typing import Any, Optional


def canonicalize(obj: Any) -> Any:
    """
    Convert arbitrary nested dict/list to canonical form.

    Rules:
    - dict keys sorted alphabetically
    - tuples converted to lists
    - recursive normalization
    """
    if isinstance(obj, dict):
        return {k: canonicalize(obj[k]) for k in sorted(obj.keys())}
    if isinstance(obj, (list, tuple)):
        return [canonicalize(x) for x in obj]
    return obj


def canonical_json_bytes(obj: Any) -> bytes:
    """
    Deterministic JSON bytes.

    Guarantees:
    - sort_keys=True (secondary safety)
    - separators remove whitespace
    - ensure_ascii=False keeps UTF-8 stable
    - canonical preprocessing via canonicalize()
    """
    canon = canonicalize(obj)
    s = json.dumps(canon, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    return s.encode("utf-8")


def canonical_json_str(obj: Any) -> str:
    """Same guarantees as canonical_json_bytes but returns string."""
    return canonical_json_bytes(obj).decode("utf-8")


def dump_column(obj: Any) -> Optional[str]:
    """Serialize a nullable structured column. None stays NULL."""
    if obj is None:
        return None
    return canonical_json_str(obj)


def load_column(raw: Optional[str]) -> Any:
    """Inverse of dump_column."""
    if raw is None or raw == "":
        return None
    return json.loads(raw)
