
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict

from .b64d import b64d
from .b64e import b64e


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string"""
    return datetime.now(timezone.utc).isoformat()


def pack_json(document: Dict[str, Any]) -> str:
    """Serialize a JSON object into one opaque base64 token"""
    return b64e(json.dumps(document, separators=(",", ":")).encode("utf-8"))


def unpack_json(token: str) -> Dict[str, Any]:
    """Inverse of :func:`pack_json`; raises ``ValueError`` on any shape problem"""
    try:
        document = json.loads(b64d(token).decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValueError("token does not decode to JSON") from exc
    if not isinstance(document, dict):
        raise ValueError("token does not decode to a JSON object")
    return document


__all__ = ["b64d", "b64e", "pack_json", "unpack_json", "utc_now_iso"]
