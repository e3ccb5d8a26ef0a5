import time
import jwt
from .config import settings

ALGO = "HS256"

def issue_token(sub: str, name: str | None = None, ttl_seconds: int | None = None) -> str:
    now = int(time.time())
    ttl = ttl_seconds if ttl_seconds is not None else settings.TOKEN_TTL_SECONDS
    payload = {"sub": sub, "iat": now, "exp": now + ttl}
    if name:
        payload["name"] = name
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=ALGO)

def decode_token(token: str) -> dict | None:
    """Claims of a valid token, or None when it is expired, forged or malformed."""
    try:
        claims = jwt.decode(token, settings.JWT_SECRET, algorithms=[ALGO])
    except jwt.PyJWTError:
        return None
    if not claims.get("sub"):
        return None
    return claims
