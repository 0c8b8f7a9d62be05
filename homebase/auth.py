import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .config import ACCESS_TOKEN_EXPIRE_MINUTES, JWT_ALGORITHM, SECRET_KEY
from .database import get_db
from .models import User

logger = logging.getLogger(__name__)

security = HTTPBearer()


def create_access_token(user_id: str, expires_minutes: Optional[int] = None) -> str:
    """
    Issue a signed session token for a user.

    Sign-in itself is owned by the identity provider; this is used by that
    integration and by tests.
    """
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes or ACCESS_TOKEN_EXPIRE_MINUTES
    )
    payload = {"sub": str(user_id), "exp": expire}
    return jwt.encode(payload, SECRET_KEY, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> str:
    """Return the user id carried by a token or raise 401"""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"❌ Token verification failed: {e}")
        raise HTTPException(status_code=401, detail="Invalid or expired token") from e

    user_id = payload.get("sub")
    if not user_id:
        logger.warning("❌ Token missing subject claim")
        raise HTTPException(status_code=401, detail="Invalid token")
    return user_id


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the bearer token to a user"""
    user_id = decode_access_token(credentials.credentials)

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        logger.warning(f"❌ Token subject {user_id} has no matching user")
        raise HTTPException(status_code=401, detail="User not found")

    return user


async def get_current_contractor(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != "contractor":
        raise HTTPException(status_code=403, detail="Contractor account required")
    return current_user
