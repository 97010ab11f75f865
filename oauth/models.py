"""Data models for OAuth flows and stored provider tokens"""

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import BaseModel

DEFAULT_EXPIRES_IN = 3600


@dataclass
class PKCEParams:
    """Parameters for one authorization attempt

    Attributes:
        code_verifier: base64url-encoded 32 random bytes, unpadded
        code_challenge: base64url(SHA-256(code_verifier)), unpadded
        state: hex-encoded 16 random bytes used for CSRF protection
        provider_id: Provider the attempt belongs to
        session_id: Server session id when the flow is relayed through a server provider
        server_id: Server provider that issued the authorization URL, if any
    """
    code_verifier: str
    code_challenge: str
    state: str
    provider_id: str
    session_id: Optional[str] = None
    server_id: Optional[str] = None


class ProviderTokens(BaseModel):
    """Token set issued by an OAuth provider

    ``expires_at`` is absolute epoch milliseconds and is always derived
    from ``expires_in`` at the moment the token response arrived.
    """
    provider_id: str
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    expires_in: int = DEFAULT_EXPIRES_IN
    expires_at: int
    scope: Optional[str] = None
    user: Optional[Dict[str, Any]] = None
    stored_at: Optional[int] = None
    updated_at: Optional[int] = None

    @classmethod
    def from_token_response(
        cls,
        provider_id: str,
        token_data: Dict[str, Any],
        issued_at_ms: Optional[int] = None,
        fallback_refresh_token: Optional[str] = None,
        user: Optional[Dict[str, Any]] = None,
    ) -> "ProviderTokens":
        """Build a token record from a token endpoint JSON response

        Args:
            provider_id: Provider that issued the tokens
            token_data: Parsed JSON body of the token response
            issued_at_ms: Issuance time in epoch ms (default: now)
            fallback_refresh_token: Refresh token to keep when none is returned
            user: Normalized user profile

        Returns:
            ProviderTokens instance
        """
        if issued_at_ms is None:
            issued_at_ms = int(time.time() * 1000)
        expires_in = int(token_data.get("expires_in") or DEFAULT_EXPIRES_IN)
        return cls(
            provider_id=provider_id,
            access_token=token_data["access_token"],
            refresh_token=token_data.get("refresh_token") or fallback_refresh_token,
            token_type=token_data.get("token_type") or "Bearer",
            expires_in=expires_in,
            expires_at=issued_at_ms + expires_in * 1000,
            scope=token_data.get("scope"),
            user=user,
        )

    def is_expired(self, buffer_seconds: int = 0, now_ms: Optional[int] = None) -> bool:
        """Check whether the token is expired, or will be within ``buffer_seconds``"""
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        return now_ms >= self.expires_at - buffer_seconds * 1000
