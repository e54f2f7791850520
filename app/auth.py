# app/auth.py
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from jwt import InvalidTokenError
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext

from .config import settings
from .errors import AuthenticationFailure, AuthorizationFailure
from .models import User
from .schemas import Identity, Role

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(user: User, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    claims = {"sub": str(user.id), "role": user.role, "exp": expire}
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Identity:
    """Resolves a bearer token to the caller's identity."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        return Identity(user_id=int(payload["sub"]), role=Role(payload["role"]))
    except (InvalidTokenError, KeyError, ValueError) as e:
        raise AuthenticationFailure(str(e)) from e


def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Identity:
    if credentials is None or not credentials.credentials:
        raise AuthenticationFailure("Missing bearer token")
    return decode_access_token(credentials.credentials)


def require_roles(*roles: Role):
    """
    Builds a dependency that only lets the given roles through.

    Usage: ``identity: Identity = Depends(require_roles(Role.ADMIN))``
    """
    allowed = frozenset(roles)

    def role_gate(identity: Identity = Depends(get_current_identity)) -> Identity:
        if identity.role not in allowed:
            raise AuthorizationFailure(f"Role '{identity.role.value}' is not permitted")
        return identity

    return role_gate
