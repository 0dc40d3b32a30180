"""Per-request values shared with code that has no access to the Request object."""

from __future__ import annotations

import uuid
from contextvars import ContextVar
from typing import Optional

_request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)
_restaurant_id_ctx: ContextVar[int | None] = ContextVar("restaurant_id", default=None)


def generate_request_id() -> str:
    return uuid.uuid4().hex


def set_request_id(request_id: str | None) -> None:
    _request_id_ctx.set(request_id)


def get_request_id() -> Optional[str]:
    return _request_id_ctx.get()


def set_current_restaurant_id(restaurant_id: int | None) -> None:
    """Bind the resolved restaurant to the current request (None to clear)."""
    _restaurant_id_ctx.set(restaurant_id)


def get_current_restaurant_id() -> Optional[int]:
    return _restaurant_id_ctx.get()


def reset_request_context() -> None:
    _request_id_ctx.set(None)
    _restaurant_id_ctx.set(None)
