from jose import JWTError, jwt

from payflow.core.config import settings

# Tokens are issued by the auth service; we only read them.
ALGO = "HS256"


def decode_token(token: str) -> dict:
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGO])


def access_token_subject(token: str) -> str:
    """User id of a valid access token. Refresh tokens are rejected."""
    payload = decode_token(token)
    if payload.get("type") != "access" or not payload.get("sub"):
        raise JWTError("Not an access token")
    return str(payload["sub"])
