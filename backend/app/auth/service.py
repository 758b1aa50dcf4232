"""Bearer token issuance and verification.

Tokens are HS256 JWTs signed with ``auth.secret_key``. The issuer doubles as
the audience, and tokens carry both the standard ``sub`` claim and a
``userId`` claim alongside the ``name`` claim.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from app.config import AuthSettings

logger = logging.getLogger(__name__)


@dataclass
class Identity:
    """A verified caller identity.

    Attributes:
        user_id: The user the token was issued to.
        username: Login name recorded in the token, if any.
        claims: The full decoded claim set (raw principal).
    """
    user_id: str
    username: Optional[str] = None
    claims: Dict[str, Any] = field(default_factory=dict)


class TokenService:
    """Issues and verifies signed bearer tokens."""

    def __init__(self, settings: AuthSettings) -> None:
        self.settings = settings

    def generate_token(
        self, user_id: str, username: str, expires_delta: Optional[timedelta] = None
    ) -> str:
        """Create a signed token for a user."""
        now = datetime.now(timezone.utc)
        expire = now + (expires_delta or timedelta(days=self.settings.token_expire_days))
        claims = {
            "sub": user_id,
            "userId": user_id,
            "name": username,
            "iss": self.settings.issuer,
            "aud": self.settings.issuer,
            "iat": now,
            "exp": expire,
        }
        return jwt.encode(claims, self.settings.secret_key, algorithm=self.settings.algorithm)

    def validate_token(self, token: str) -> Optional[Dict[str, Any]]:
        """Verify signature, issuer, audience and expiry.

        Returns:
            Decoded claims, or None if the token is invalid.
        """
        try:
            return jwt.decode(
                token,
                self.settings.secret_key,
                algorithms=[self.settings.algorithm],
                audience=self.settings.issuer,
                issuer=self.settings.issuer,
            )
        except JWTError as e:
            logger.warning(f"[Auth] Token validation failed: {e}")
            return None

    def resolve(self, token: str) -> Optional[Identity]:
        """Resolve a bearer credential to an identity, or None."""
        claims = self.validate_token(token)
        if claims is None:
            return None
        user_id = claims.get("userId") or claims.get("sub")
        if not user_id:
            logger.warning("[Auth] Token carries no user id claim")
            return None
        return Identity(user_id=user_id, username=claims.get("name"), claims=claims)
