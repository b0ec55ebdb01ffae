# password hashing and JWT helpers
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from starfood import config
from starfood.utils.errors import Unauthorized

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


@dataclass(frozen=True)
class AuthUser:
    """Identity carried inside a token."""

    id: int
    email: str
    role: str = "customer"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def _create_token(user: AuthUser, secret: str, expires_minutes: int) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode = {"id": user.id, "email": user.email, "role": user.role, "exp": expire}
    return jwt.encode(to_encode, secret, algorithm=config.JWT_ALG)


def create_access_token(user: AuthUser, expires_minutes: Optional[int] = None) -> str:
    return _create_token(
        user, config.JWT_SECRET, expires_minutes or config.JWT_ACCESS_EXPIRES_MINUTES
    )


def create_refresh_token(user: AuthUser) -> str:
    return _create_token(user, config.JWT_REFRESH_SECRET, config.JWT_REFRESH_EXPIRES_MINUTES)


def _decode(token: str, secret: str) -> AuthUser:
    try:
        payload = jwt.decode(token, secret, algorithms=[config.JWT_ALG])
    except JWTError:
        raise Unauthorized("Invalid or expired token")
    if payload.get("id") is None:
        raise Unauthorized("Invalid or expired token")
    return AuthUser(
        id=int(payload["id"]),
        email=payload.get("email", ""),
        role=payload.get("role", "customer"),
    )


def decode_access_token(token: str) -> AuthUser:
    return _decode(token, config.JWT_SECRET)


def decode_refresh_token(token: str) -> AuthUser:
    return _decode(token, config.JWT_REFRESH_SECRET)
