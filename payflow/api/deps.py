from functools import lru_cache

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from sqlalchemy.orm import Session
from payflow.db.session import get_db
from payflow.core.config import settings
from payflow.core.errors import ConfigurationError, Forbidden, Unauthorized
from payflow.core.security import access_token_subject
from payflow.models.user import User
from payflow.services.p24_client import P24Client, P24Config

bearer = HTTPBearer(auto_error=False)

def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: Session = Depends(get_db),
) -> User:
    if not creds:
        raise Unauthorized("Not authenticated")
    try:
        user_id = access_token_subject(creds.credentials)
    except JWTError:
        raise Unauthorized("Invalid token")
    user = db.get(User, user_id)
    if not user or not user.is_active:
        raise Unauthorized("User not found or inactive")
    return user

def require_roles(*roles: str):
    def _guard(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise Forbidden("Forbidden")
        return user
    return _guard


@lru_cache
def get_p24_client() -> P24Client:
    """Built once from settings; the rest of the code only sees the frozen P24Config."""
    if not (settings.P24_MERCHANT_ID and settings.P24_POS_ID and settings.P24_API_KEY and settings.P24_CRC):
        raise ConfigurationError("Przelewy24 is not configured (missing env vars)")
    try:
        merchant_id, pos_id = int(settings.P24_MERCHANT_ID), int(settings.P24_POS_ID)
    except ValueError:
        raise ConfigurationError("P24_MERCHANT_ID and P24_POS_ID must be numeric")
    return P24Client(P24Config(
        merchant_id=merchant_id,
        pos_id=pos_id,
        api_key=settings.P24_API_KEY,
        crc=settings.P24_CRC,
        sandbox=settings.P24_SANDBOX,
        timeout=settings.P24_TIMEOUT,
    ))
