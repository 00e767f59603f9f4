from dataclasses import dataclass
import logging

import jwt
from fastapi import HTTPException, Request, Depends

from stepwise.config import settings

logger = logging.getLogger("security")

ROLE_ADMIN = "admin"


@dataclass(frozen=True)
class Identity:
    """Caller identity as issued by the identity provider."""

    user_id: int
    is_admin: bool = False


def _get_token_payload(auth_header: str | None) -> dict:
    if not auth_header:
        logger.warning("Authorization header missing")
        raise HTTPException(status_code=401, detail="Authorization required")
    token = auth_header.split(" ", 1)[1] if auth_header.lower().startswith("bearer ") else auth_header
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.warning("Token has expired")
        raise HTTPException(status_code=401, detail="Token has expired")
    except jwt.PyJWTError as e:
        logger.warning(f"Invalid token: {e}")
        raise HTTPException(status_code=401, detail="Invalid authentication token")


async def get_identity(request: Request) -> Identity:
    payload = _get_token_payload(request.headers.get("authorization"))
    user_id = payload.get("user_id")
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid authentication token")
    return Identity(user_id=int(user_id), is_admin=payload.get("role") == ROLE_ADMIN)


async def require_admin(identity: Identity = Depends(get_identity)) -> Identity:
    if not identity.is_admin:
        logger.warning(f"User {identity.user_id} tried to use an admin route")
        raise HTTPException(status_code=403, detail="Admin access required")
    return identity
