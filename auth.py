"""Bearer-token identity resolution for cart and admin routes."""
from datetime import datetime, timedelta
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import JWT_EXPIRES_MIN, JWT_SECRET
from errors import InvalidRequest
from identity import GuestIdentity, Identity, UserIdentity

security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)


def create_token(user_id: str, email: Optional[str] = None, is_admin: bool = False) -> str:
    payload = {
        "sub": str(user_id),
        "email": email,
        "is_admin": is_admin,
        "exp": datetime.utcnow() + timedelta(minutes=JWT_EXPIRES_MIN),
        "iat": datetime.utcnow(),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> dict:
    payload = decode_token(credentials.credentials)
    if not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid token")
    return payload


async def get_admin_user(user: dict = Depends(get_current_user)) -> dict:
    if not user.get("is_admin"):
        raise HTTPException(status_code=403, detail="Admin only")
    return user


async def get_user_identity(user: dict = Depends(get_current_user)) -> UserIdentity:
    return UserIdentity(user["sub"])


async def get_cart_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security),
    x_session_id: Optional[str] = Header(None),
) -> Identity:
    """A valid bearer token wins; anything else falls back to the guest session header."""
    if credentials is not None:
        try:
            payload = jwt.decode(credentials.credentials, JWT_SECRET, algorithms=["HS256"])
        except jwt.InvalidTokenError:
            payload = None
        if payload and payload.get("sub"):
            return UserIdentity(payload["sub"])
    if x_session_id:
        return GuestIdentity(x_session_id)
    raise InvalidRequest("Either a bearer token or an X-Session-Id header is required")
