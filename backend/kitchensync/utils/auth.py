from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Sequence

import jwt
from jwt import InvalidTokenError


@dataclass(frozen=True)
class StaffClaims:
    staff_id: int
    restaurant_id: int


def create_access_token(
    *,
    staff_id: int,
    restaurant_id: int,
    secret: str,
    algorithm: str = "HS256",
    expires_delta: timedelta | None = None,
) -> str:
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or timedelta(minutes=30))
    payload = {"sub": str(staff_id), "rid": restaurant_id, "iat": now, "exp": exp}
    return jwt.encode(payload, secret, algorithm=algorithm)


def decode_access_token(
    token: str,
    *,
    secret: str,
    algorithms: Sequence[str],
) -> StaffClaims:
    try:
        payload = jwt.decode(token, secret, algorithms=list(algorithms))
    except InvalidTokenError as exc:  # includes ExpiredSignatureError
        raise ValueError("invalid token") from exc

    sub = payload.get("sub")
    rid = payload.get("rid")
    if sub is None or rid is None:
        raise ValueError("token missing sub or rid")
    try:
        return StaffClaims(staff_id=int(sub), restaurant_id=int(rid))
    except (TypeError, ValueError) as exc:
        raise ValueError("token claims are not integers") from exc
