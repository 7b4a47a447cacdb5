"""
JWT utilities for issuing and verifying access tokens.

Functions
---------
create_access_token(data: dict) -> str
    Creates a signed JWT carrying `exp`, `iat`, `iss`, `aud` and a unique `jti`.
decode_access_token(token: str) -> dict | None
    Verify a JWT's signature, expiry, issuer and audience and return its claims.

Tokens alone are not sufficient for authentication: the service layer also
requires a live session row (see `letschat.database.core.auth.verify_token`).

Environment contract (from `settings`)
--------------------------------------
SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES, JWT_ISSUER, JWT_AUDIENCE
"""

from datetime import datetime, timezone
from typing import Optional
import logging
import uuid

from jose import jwt, JWTError
from letschat.database.config.config import settings

logger = logging.getLogger(__name__)


def create_access_token(data: dict) -> str:
    """
    Create a signed JWT access token.

    Parameters
    ----------
    data : dict
        Claims to embed in the token (at least `sub`).

    Returns
    -------
    str
        Encoded JWT string.

    Notes
    ----------
    - `exp` is computed from ACCESS_TOKEN_EXPIRE_MINUTES.
    - `jti` makes two tokens issued in the same second distinct, which the
      session table relies on (it stores a unique hash per token).
    """
    now = int(datetime.now(timezone.utc).timestamp())
    encoding = data.copy()
    encoding.update({
        "iat": now,
        "exp": now + int(settings.ACCESS_TOKEN_EXPIRE_MINUTES) * 60,
        "iss": settings.JWT_ISSUER,
        "aud": settings.JWT_AUDIENCE,
        "jti": uuid.uuid4().hex,
    })
    return jwt.encode(encoding, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> Optional[dict]:
    """
    Verify a JWT and return its claims.

    Returns
    ----------
    dict | None
        The claims if the token is valid, otherwise None.
    """
    if not token:
        return None
    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            issuer=settings.JWT_ISSUER,
        )
    except JWTError as e:
        logger.debug("Rejected token: %s", e)
        return None

