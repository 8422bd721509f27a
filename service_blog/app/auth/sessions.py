"""
Stateless signed session tokens.

Tokens are HS256 JWTs. There is no server-side revocation list: a session
ends when it expires or when the client drops the cookie, and rotating the
secret invalidates every outstanding token.
"""

import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from jose import jwt
from jose.exceptions import JWTError
from pydantic import BaseModel

from shared.logging import get_logger

ALGORITHM = "HS256"


class SessionUser(BaseModel):
    """Verified identity handed to the issuer."""
    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_superuser: bool = False

    @property
    def display_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class Session(BaseModel):
    """Decoded session."""
    subject_id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    display_name: str = ""
    is_superuser: bool = False
    issued_at: datetime
    expires_at: datetime

    def to_public(self) -> Dict[str, Any]:
        """Shape returned by the client-side session query."""
        return {
            "user": {
                "id": self.subject_id,
                "email": self.email,
                "firstName": self.first_name,
                "lastName": self.last_name,
                "isSuperuser": self.is_superuser,
            },
            "expires": self.expires_at.isoformat(),
        }


class IssuedSession(BaseModel):
    token: str
    session: Session


class SessionIssuer:
    """Mints and verifies session tokens."""

    def __init__(self, secret: str, max_age_seconds: int, clock: Callable[[], float] = time.time):
        if not secret:
            raise ValueError("session secret must not be empty")
        self._secret = secret
        self.max_age_seconds = max_age_seconds
        self._clock = clock
        self.logger = get_logger("blog.sessions")

    def issue(self, user: SessionUser) -> IssuedSession:
        issued_at = int(self._clock())
        expires_at = issued_at + self.max_age_seconds
        claims = {
            "sub": user.id,
            "email": user.email,
            "firstName": user.first_name,
            "lastName": user.last_name,
            "name": user.display_name,
            "isSuperuser": user.is_superuser,
            "iat": issued_at,
            "exp": expires_at,
        }
        token = jwt.encode(claims, self._secret, algorithm=ALGORITHM)
        return IssuedSession(token=token, session=self._session_from_claims(claims))

    def verify(self, token: Optional[str]) -> Optional[Session]:
        """Return the session carried by ``token`` or None when it is not usable."""
        if not token:
            return None
        try:
            claims = jwt.decode(token, self._secret, algorithms=[ALGORITHM])
        except JWTError as e:
            self.logger.debug("Session token rejected", error=str(e))
            return None

        if not claims.get("sub") or not claims.get("email") or "exp" not in claims:
            self.logger.debug("Session token missing claims")
            return None
        try:
            return self._session_from_claims(claims)
        except (TypeError, ValueError) as e:
            self.logger.debug("Session token claims malformed", error=str(e))
            return None

    @staticmethod
    def _session_from_claims(claims: Dict[str, Any]) -> Session:
        return Session(
            subject_id=claims["sub"],
            email=claims["email"],
            first_name=claims.get("firstName"),
            last_name=claims.get("lastName"),
            display_name=claims.get("name") or "",
            is_superuser=claims.get("isSuperuser") is True,
            issued_at=datetime.fromtimestamp(int(claims.get("iat", 0)), tz=timezone.utc),
            expires_at=datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc),
        )
