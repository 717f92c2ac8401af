"""
Signed service-to-service credentials for trusted internal callers.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from shared.logging import get_logger


SERVICE_TOKEN_HEADER = "X-Internal-Service-Token"
SERVICE_TOKEN_ALGORITHM = "HS256"


@dataclass(frozen=True)
class ServiceIdentity:
    """Verified internal caller."""

    service: str
    claims: Dict[str, Any]


class ServiceTokenVerifier:
    """Verifies HS256 tokens minted with the shared internal-service secret.

    Without a configured secret no token is ever accepted, which disables the
    trusted path altogether.
    """

    def __init__(
        self,
        secret: Optional[str],
        *,
        audience: str = "service-marketplace",
        leeway: int = 10,
    ) -> None:
        self.secret = secret
        self.audience = audience
        self.leeway = leeway
        self.logger = get_logger("marketplace.auth.service_token")

    @property
    def enabled(self) -> bool:
        return bool(self.secret)

    def issue_token(self, service: str, ttl_seconds: int = 300) -> str:
        """Mint a token for ``service``; used by internal callers and tests."""
        if not self.secret:
            raise RuntimeError("Internal service secret is not configured")

        now = int(time.time())
        claims = {
            "sub": service,
            "aud": self.audience,
            "iat": now,
            "exp": now + ttl_seconds,
        }
        return jwt.encode(claims, self.secret, algorithm=SERVICE_TOKEN_ALGORITHM)

    def verify(self, token: Optional[str]) -> Optional[ServiceIdentity]:
        """Return the caller identity for a valid token, else ``None``."""
        if not token or not self.secret:
            return None

        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[SERVICE_TOKEN_ALGORITHM],
                audience=self.audience,
                options={"require_exp": True, "require_sub": True, "leeway": self.leeway},
            )
        except JWTError as exc:
            self.logger.warning("Rejected internal service token", error=str(exc))
            return None

        return ServiceIdentity(service=str(claims["sub"]), claims=claims)
