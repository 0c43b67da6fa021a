"""Bearer token verification against the identity provider's shared JWT secret."""
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

import jwt
import structlog

from settlement.config import Settings
from settlement.core.exceptions import Unauthorized

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Identity:
    """Authenticated caller."""

    user_id: uuid.UUID
    claims: Dict[str, Any]


class AuthVerifier:
    """Verifies identity-provider access tokens locally."""

    def __init__(self, settings: Settings):
        self.secret = settings.auth_jwt_secret
        self.algorithm = settings.auth_jwt_algorithm
        self.audience = settings.auth_jwt_audience

    def verify(self, token: str) -> Identity:
        """
        Decode and validate an access token.

        Raises:
            Unauthorized: If the token is expired, malformed or has no subject
        """
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                options={"require": ["exp", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            raise Unauthorized("Token expired")
        except jwt.InvalidTokenError as e:
            logger.info("token_rejected", error=str(e))
            raise Unauthorized("Invalid token")

        try:
            user_id = uuid.UUID(str(claims["sub"]))
        except ValueError:
            raise Unauthorized("Invalid token subject")
        return Identity(user_id=user_id, claims=claims)

    def verify_header(self, authorization: Optional[str]) -> Identity:
        """Verify an `Authorization: Bearer <token>` header value."""
        if not authorization or not authorization.startswith("Bearer "):
            raise Unauthorized("Unauthorized")
        return self.verify(authorization[len("Bearer "):].strip())

    def mint(self, user_id: uuid.UUID, ttl_seconds: int = 3600, **claims: Any) -> str:
        """Issue a token the verifier accepts (operator tooling and tests)."""
        now = int(time.time())
        payload: Dict[str, Any] = {
            "sub": str(user_id),
            "iat": now,
            "exp": now + ttl_seconds,
            **claims,
        }
        if self.audience:
            payload["aud"] = self.audience
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)
