from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from typing import Any, Literal, Optional

from .request_context import get_current_restaurant_id, get_request_id

AuditAction = Literal[
    "reservation.created",
    "reservation.cancelled",
    "reservation.updated",
    "reservation.completed",
    "reservation.no_show",
    "restaurant.registered",
    "restaurant.settings_updated",
    "restaurant.hours_updated",
]
AuditInitiator = Literal["guest", "staff", "platform"]

_audit_logger = logging.getLogger("audit")
_audit_logger.setLevel(logging.INFO)
if not _audit_logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    _audit_logger.addHandler(handler)
_audit_logger.propagate = False


def _enum_to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if hasattr(value, "value"):
        return str(value.value)
    return str(value)


def emit_audit_log(
    *,
    action: AuditAction,
    initiator: AuditInitiator,
    restaurant_id: Optional[int] = None,
    reservation_id: Optional[int] = None,
    reservation_date: Optional[date] = None,
    party_size: Optional[int] = None,
    status_from: Any = None,
    status_to: Any = None,
    staff_id: Optional[int] = None,
    message: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    """
    Emit one structured JSON audit line.

    ``restaurant_id`` defaults to the restaurant bound to the current request.
    Raises RuntimeError if logging fails so the caller can fail the request.
    """
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": "info",
        "action": action,
        "initiator": initiator,
        "request_id": get_request_id(),
        "restaurant_id": restaurant_id if restaurant_id is not None else get_current_restaurant_id(),
        "reservation_id": reservation_id,
        "reservation_date": reservation_date.isoformat() if reservation_date is not None else None,
        "party_size": party_size,
        "status_from": _enum_to_str(status_from),
        "status_to": _enum_to_str(status_to),
        "staff_id": staff_id,
    }
    if message is not None:
        payload["message"] = message
    if extra:
        payload.update(extra)

    # Drop None values to keep the log compact.
    compact_payload = {k: v for k, v in payload.items() if v is not None}
    try:
        _audit_logger.info(json.dumps(compact_payload, ensure_ascii=True))
    except Exception as exc:
        raise RuntimeError("failed to emit audit log") from exc
