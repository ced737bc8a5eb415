"""
Bearer token authentication for the Budget service.

``TokenAuthenticator`` turns a raw ``Authorization`` header value into a
``VerifiedIdentity``. Cryptographic verification is delegated to an injected
``TokenVerifier``; the authenticator owns header parsing, the token-class
check and the failure policy.

Two policies share one extraction/verification routine:

- ``authenticate`` rejects with ``AuthenticationError``.
- ``authenticate_optional`` degrades to ``None`` and never raises.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from shared.errors import AuthenticationError
from shared.logging import get_logger

BEARER_PREFIX = "Bearer "

MISSING_HEADER_MESSAGE = "No authorization header provided"
INVALID_FORMAT_MESSAGE = "Invalid authorization format. Use: Bearer <token>"
MISSING_TOKEN_MESSAGE = "No token provided"
INVALID_TOKEN_MESSAGE = "Invalid or expired token"


class TokenVerifier(Protocol):
    """Identity-provider capability that verifies a raw token."""

    async def verify(self, token: str) -> Dict[str, Any]:
        """Return the token's claims or raise on any verification failure."""
        ...


@dataclass(frozen=True)
class VerifiedIdentity:
    """Identity derived from a verified token; lives for one request."""

    subject_id: str
    email: str
    token_use: str
    display_name: Optional[str] = None


class TokenAuthenticator:
    """Authenticator for ``Authorization: Bearer <token>`` headers.

    Verification detail travels on ``AuthenticationError.details`` and is
    logged once by the policy that handles the failure: ``warning`` when the
    request is rejected, ``debug`` when it degrades to anonymous.
    """

    def __init__(self, verifier: TokenVerifier, expected_token_use: str = "id"):
        self.verifier = verifier
        self.expected_token_use = expected_token_use
        self.logger = get_logger("budget.auth")

    async def authenticate(self, authorization: Optional[str]) -> VerifiedIdentity:
        """Authenticate a header value, raising ``AuthenticationError`` on failure."""
        try:
            return await self._resolve(authorization)
        except AuthenticationError as e:
            self.logger.warning("Authentication failed", error=e.message, **e.details)
            raise

    async def authenticate_optional(self, authorization: Optional[str]) -> Optional[VerifiedIdentity]:
        """Authenticate a header value, returning ``None`` on any failure."""
        try:
            return await self._resolve(authorization)
        except AuthenticationError as e:
            if authorization:
                self.logger.debug("Optional authentication failed", error=e.message, **e.details)
            else:
                self.logger.debug("Optional authentication skipped, no credentials")
            return None

    async def _resolve(self, authorization: Optional[str]) -> VerifiedIdentity:
        token = self._extract_token(authorization)
        return await self._verify(token)

    def _extract_token(self, authorization: Optional[str]) -> str:
        """Pull the bearer token out of the header value.

        The token is the first space-separated field after the scheme, so
        ``"Bearer a b"`` yields ``"a"`` and ``"Bearer  a"`` yields nothing.
        """
        if not authorization:
            raise AuthenticationError(MISSING_HEADER_MESSAGE)

        if not authorization.startswith(BEARER_PREFIX):
            raise AuthenticationError(INVALID_FORMAT_MESSAGE)

        token = authorization.split(" ")[1]
        if not token:
            raise AuthenticationError(MISSING_TOKEN_MESSAGE)

        return token

    async def _verify(self, token: str) -> VerifiedIdentity:
        """Verify the token and map its claims to a ``VerifiedIdentity``.

        Every failure collapses into the same generic message.
        """
        try:
            claims = await self.verifier.verify(token)
        except Exception as e:
            raise AuthenticationError(
                INVALID_TOKEN_MESSAGE,
                details={"reason": "verification_failed", "cause": str(e), "cause_type": type(e).__name__}
            ) from e

        token_use = claims.get("token_use")
        if token_use != self.expected_token_use:
            raise AuthenticationError(INVALID_TOKEN_MESSAGE, details={
                "reason": "token_use",
                "token_use": token_use,
                "expected": self.expected_token_use,
            })

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise AuthenticationError(INVALID_TOKEN_MESSAGE, details={"reason": "missing_sub"})

        name = claims.get("name")
        return VerifiedIdentity(
            subject_id=subject,
            email=str(claims.get("email") or ""),
            token_use=token_use,
            display_name=name if isinstance(name, str) else None,
        )
