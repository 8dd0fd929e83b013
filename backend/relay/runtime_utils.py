from __future__ import annotations

import math
import time
import uuid
from datetime import datetime, timezone
from typing import Any

from .runtime_constants import MIN_VOTES_NEEDED
from .runtime_errors import ProtocolError


def now_ms() -> int:
    return int(time.time() * 1000)


def iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def prefixed_id(prefix: str) -> str:
    return f"{prefix}_{now_ms()}_{uuid.uuid4().hex[:8]}"


def normalize_address(raw: Any) -> str:
    return str(raw or "").strip().lower()


def same_address(left: Any, right: Any) -> bool:
    normalized = normalize_address(left)
    return bool(normalized) and normalized == normalize_address(right)


def short_address(raw: Any) -> str:
    value = str(raw or "").strip()
    if len(value) <= 10:
        return value or "-"
    return f"{value[:6]}...{value[-4:]}"


def sanitize_room_code(raw: Any) -> str:
    value = str(raw or "").strip().upper()
    return "".join(ch for ch in value if ch.isalnum())[:12]


def sanitize_display_name(raw: Any, address: str) -> str:
    value = " ".join(str(raw or "").split())[:32]
    return value or short_address(address)


def coerce_amount(raw: Any, default: float = 0.0) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    if math.isnan(value) or math.isinf(value):
        return default
    return value


def votes_needed(team_size: int) -> int:
    """YES votes required to pass a weapon proposal: at least two, majority beyond that."""
    return max(MIN_VOTES_NEEDED, math.ceil(max(0, team_size) / 2))


def envelope(message_type: str, **payload: Any) -> dict[str, Any]:
    return {"type": message_type, "payload": payload}


def require_text(payload: dict[str, Any], name: str) -> str:
    value = str(payload.get(name) or "").strip()
    if not value:
        raise ProtocolError(f"Missing field: {name}")
    return value
