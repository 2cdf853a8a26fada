import secrets
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader
from jose import jwt, JWTError

from .config import settings
from .guest_types import resolve_guest_type
from .models import GuestType

api_key_header = APIKeyHeader(name="Authorization")
service_key_header = APIKeyHeader(name="X-Service-Key")


def _decode(token: str) -> dict:
    scheme, jwt_token = token.split()
    if scheme.lower() != "bearer":
        raise ValueError("not a bearer token")
    return jwt.decode(jwt_token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])


async def get_key_by_user_id_or_ip(request: Request) -> str:
    """
    Tries to get the user ID from the JWT token.
    If it fails (no token, invalid token), it falls back to the client's IP.
    """
    try:
        user_id = _decode(request.headers.get("Authorization")).get("sub")
        if user_id:
            return str(user_id)
    except (JWTError, ValueError, AttributeError, TypeError):
        # If token is invalid, missing, or malformed, limit by IP
        pass
    return request.client.host


def get_token_claims(token: Annotated[str, Depends(api_key_header)]) -> dict:
    """
    Decodes the JWT from the 'Authorization: Bearer ...' header.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = _decode(token)
        if payload.get("sub") is None:
            raise credentials_exception
        int(payload["sub"])
        return payload
    except (JWTError, ValueError, AttributeError, TypeError):
        raise credentials_exception


def get_current_user_id_from_token(claims: Annotated[dict, Depends(get_token_claims)]) -> int:
    return int(claims["sub"])


def require_admin(claims: Annotated[dict, Depends(get_token_claims)]) -> int:
    if claims.get("role") != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin privileges required")
    return int(claims["sub"])


def require_payment_service(key: Annotated[str, Depends(service_key_header)]) -> None:
    if not secrets.compare_digest(key, settings.PAYMENT_SERVICE_KEY):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid service key")


async def get_guest_type(user_id: Annotated[int, Depends(get_current_user_id_from_token)]) -> GuestType:
    return await resolve_guest_type(user_id)
