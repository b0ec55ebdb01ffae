# response envelope and shared request dependencies
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Depends, Header, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from starfood.utils.errors import Forbidden, Unauthorized
from starfood.utils.security import AuthUser, decode_access_token


def success(message: str, body: Any = None, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(
            {"success": True, "message": message, "body": body, "status": status_code}
        ),
    )


def fail(message: str, status_code: int = 400, body: Any = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(
            {"success": False, "message": message, "body": body, "status": status_code}
        ),
    )


@dataclass(frozen=True)
class Page:
    page: int
    limit: int


def page_params(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
) -> Page:
    return Page(page=page, limit=limit)


def get_current_user(authorization: Optional[str] = Header(None)) -> AuthUser:
    if not authorization:
        raise Unauthorized("Missing Authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthorized("Invalid Authorization header")
    return decode_access_token(token.strip())


def require_admin(user: AuthUser = Depends(get_current_user)) -> AuthUser:
    if not user.is_admin:
        raise Forbidden("Admin access required")
    return user
