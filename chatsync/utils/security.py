from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt

from chatsync.config import get_settings


def create_access_token(subject: str, expires_in: timedelta = timedelta(hours=1)) -> str:
    settings = get_settings()
    expire = datetime.now(timezone.utc) + expires_in
    return jwt.encode({"sub": subject, "exp": expire}, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Decode and verify a token; raises jwt.PyJWTError when invalid or expired."""
    settings = get_settings()
    payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    if not payload.get("sub"):
        raise jwt.InvalidTokenError("Token has no subject")
    return payload
