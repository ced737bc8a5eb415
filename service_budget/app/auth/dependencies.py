"""
FastAPI dependencies that hand a ``VerifiedIdentity`` to route handlers.
"""

from typing import Optional

from fastapi import Header

from shared.errors import AuthenticationError
from shared.logging import set_user_context
from shared.metrics import MetricsCollector
from .authenticator import TokenAuthenticator, VerifiedIdentity


class IdentityDependencies:
    """Request-scoped identity resolution.

    Use ``Depends(deps.require)`` on protected routes and
    ``Depends(deps.optional)`` on routes that also serve anonymous callers.
    """

    def __init__(self, authenticator: TokenAuthenticator, metrics: Optional[MetricsCollector] = None):
        self.authenticator = authenticator
        self.metrics = metrics

    async def require(self, authorization: Optional[str] = Header(None)) -> VerifiedIdentity:
        try:
            identity = await self.authenticator.authenticate(authorization)
        except AuthenticationError:
            self._record("required", "rejected")
            raise

        self._record("required", "authenticated")
        set_user_context(identity.subject_id)
        return identity

    async def optional(self, authorization: Optional[str] = Header(None)) -> Optional[VerifiedIdentity]:
        identity = await self.authenticator.authenticate_optional(authorization)
        if identity is None:
            self._record("optional", "anonymous")
            return None

        self._record("optional", "authenticated")
        set_user_context(identity.subject_id)
        return identity

    def _record(self, mode: str, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.record_authentication(mode, outcome)
