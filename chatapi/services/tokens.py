from __future__ import annotations

import time
from typing import Any, Dict, Optional

import jwt

from chatapi.core.errors import Unauthorized
from chatapi.core.settings import S

_ALGORITHM = "HS256"


class SessionTokenIssuer:
    """Mints and checks signed bearer tokens that carry only an account id.

    ``verify`` checks signature and expiry and nothing else. Callers that need
    revocation re-resolve the account afterwards (see ``chatapi.auth.deps``).
    """

    def __init__(self, secret: Optional[str] = None, issuer: Optional[str] = None, ttl_seconds: Optional[int] = None):
        self.secret = secret or S.jwt_secret
        self.issuer = issuer or S.jwt_issuer
        self.ttl_seconds = ttl_seconds or S.session_token_ttl_seconds

    def issue(self, account_id: str, now: Optional[int] = None) -> str:
        now = int(time.time()) if now is None else int(now)
        payload: Dict[str, Any] = {
            "iss": self.issuer,
            "sub": account_id,
            "typ": "session",
            "iat": now,
            "exp": now + self.ttl_seconds,
        }
        return jwt.encode(payload, self.secret, algorithm=_ALGORITHM)

    def verify(self, token: str) -> str:
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[_ALGORITHM],
                issuer=self.issuer,
                options={"require": ["exp", "iat", "sub"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise Unauthorized("Token expired") from exc
        except jwt.PyJWTError as exc:
            raise Unauthorized("Invalid token") from exc

        sub = payload.get("sub")
        if payload.get("typ") != "session" or not isinstance(sub, str) or not sub.strip():
            raise Unauthorized("Invalid token")
        return sub


session_tokens = SessionTokenIssuer()
