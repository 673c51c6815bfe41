from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import jwt
from fastapi import Depends, Header, HTTPException, WebSocket, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from hobbyhub.core.config import settings


bearer = HTTPBearer(auto_error=False)


@dataclass(slots=True)
class AuthUser:
    user_id: int
    roles: list[str]


def _decode_token(token: str) -> dict[str, Any]:
    kwargs: dict[str, Any] = {
        "algorithms": [settings.jwt_algorithm],
        "leeway": settings.jwt_exp_leeway_seconds,
    }

    if settings.jwt_audience:
        kwargs["audience"] = settings.jwt_audience
    else:
        kwargs["options"] = {"verify_aud": False}

    if settings.jwt_issuer:
        kwargs["issuer"] = settings.jwt_issuer

    try:
        payload = jwt.decode(token, settings.jwt_secret, **kwargs)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    return payload


def _parse_payload(payload: dict[str, Any]) -> AuthUser:
    raw_id = payload.get("user_id") or payload.get("sub")
    try:
        user_id = int(raw_id)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=401, detail="Invalid user id claim") from exc

    roles = payload.get("roles") or []
    if not isinstance(roles, list):
        roles = []

    return AuthUser(user_id=user_id, roles=[str(r).strip().lower() for r in roles])


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    x_user_id: int | None = Header(default=None, alias="X-User-Id"),
) -> AuthUser:
    if credentials is not None:
        return _parse_payload(_decode_token(credentials.credentials))

    # Identity resolved upstream by the gateway.
    if x_user_id is not None and settings.trust_user_id_header:
        return AuthUser(user_id=int(x_user_id), roles=[])

    raise HTTPException(status_code=401, detail="Missing bearer token or user identity header")


async def get_current_user_from_ws(websocket: WebSocket) -> AuthUser:
    token = websocket.query_params.get("token")
    if not token:
        raise HTTPException(status_code=401, detail="Missing token")
    return _parse_payload(_decode_token(token))
