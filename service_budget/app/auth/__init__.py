"""Bearer token authentication."""

from .authenticator import TokenAuthenticator, TokenVerifier, VerifiedIdentity
from .cognito import CognitoTokenVerifier

__all__ = [
    "TokenAuthenticator",
    "TokenVerifier",
    "VerifiedIdentity",
    "CognitoTokenVerifier",
]
