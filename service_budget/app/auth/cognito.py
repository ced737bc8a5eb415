"""
Cognito user pool token verification.
"""

import asyncio
import time
from typing import Any, Dict, List, Optional

import httpx
from jose import JWTError, jwt

from shared.errors import TokenVerificationError
from shared.logging import get_logger

COGNITO_ISSUER_TEMPLATE = "https://cognito-idp.{region}.amazonaws.com/{user_pool_id}"


class CognitoTokenVerifier:
    """Verifies Cognito-issued JWTs against the user pool's JWKS.

    Only tokens of the configured class (``id`` or ``access``) are accepted.
    Signing keys are cached for ``cache_ttl`` seconds; an unknown ``kid``
    forces one refresh so rotated keys are picked up.
    """

    def __init__(
        self,
        user_pool_id: str,
        client_id: str,
        *,
        token_use: str = "id",
        region: Optional[str] = None,
        cache_ttl: int = 3600,
        http_timeout: float = 5.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if token_use not in ("id", "access"):
            raise ValueError(f"Unsupported token_use: {token_use}")

        self.user_pool_id = user_pool_id
        self.client_id = client_id
        self.token_use = token_use
        # Pool ids look like "<region>_<suffix>"
        self.region = region or user_pool_id.split("_", 1)[0]
        self.issuer = COGNITO_ISSUER_TEMPLATE.format(region=self.region, user_pool_id=user_pool_id)
        self.jwks_url = f"{self.issuer}/.well-known/jwks.json"
        self.cache_ttl = cache_ttl
        self.logger = get_logger("budget.auth.cognito")

        self._keys: Optional[List[Dict[str, Any]]] = None
        self._last_refresh: float = 0.0
        self._lock = asyncio.Lock()
        self._client = http_client or httpx.AsyncClient(timeout=http_timeout)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def verify(self, token: str) -> Dict[str, Any]:
        """Verify the token and return its claims."""
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise TokenVerificationError("Malformed token header", details={"error": str(exc)}) from exc

        kid = header.get("kid")
        if not isinstance(kid, str):
            raise TokenVerificationError("JWT header missing key id (kid)")

        key_data = await self._get_key(kid)
        if not key_data:
            raise TokenVerificationError("Signing key not found for token", details={"kid": kid})

        audience = self.client_id if self.token_use == "id" else None
        try:
            claims = jwt.decode(
                token,
                key_data,
                algorithms=["RS256"],
                audience=audience,
                issuer=self.issuer,
                options={"verify_aud": audience is not None, "verify_at_hash": False},
            )
        except JWTError as exc:
            raise TokenVerificationError("JWT validation failed", details={"error": str(exc)}) from exc

        if claims.get("token_use") != self.token_use:
            raise TokenVerificationError(
                "Unexpected token_use",
                details={"token_use": claims.get("token_use"), "expected": self.token_use},
            )

        # Access tokens carry the app client in client_id instead of aud
        if self.token_use == "access" and claims.get("client_id") != self.client_id:
            raise TokenVerificationError("Token issued for a different client")

        return claims

    async def _get_key(self, kid: str) -> Optional[Dict[str, Any]]:
        """Return the JWK matching ``kid``, refreshing once on a miss."""
        await self._refresh_keys(force=False)
        for key in self._keys or []:
            if key.get("kid") == kid:
                return key

        await self._refresh_keys(force=True)
        for key in self._keys or []:
            if key.get("kid") == kid:
                return key
        return None

    async def _refresh_keys(self, *, force: bool) -> None:
        """Refresh the JWKS if the cache is stale."""
        if not force and self._is_fresh():
            return

        async with self._lock:
            if not force and self._is_fresh():
                return

            try:
                response = await self._client.get(self.jwks_url)
                response.raise_for_status()
                payload = response.json()
            except (httpx.HTTPError, ValueError) as exc:
                self.logger.error("Failed to fetch JWKS", url=self.jwks_url, error=str(exc))
                raise TokenVerificationError("Unable to fetch signing keys") from exc

            keys = payload.get("keys") if isinstance(payload, dict) else None
            if not isinstance(keys, list):
                raise TokenVerificationError("JWKS response missing 'keys' array")

            self._keys = keys
            self._last_refresh = time.time()
            self.logger.info("JWKS refreshed", keys_count=len(keys))

    def _is_fresh(self) -> bool:
        return self._keys is not None and (time.time() - self._last_refresh) < self.cache_ttl
