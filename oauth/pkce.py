"""PKCE (Proof Key for Code Exchange) generation and pending flow tracking"""

import base64
import hashlib
import hmac
import logging
import secrets
from typing import Optional

from exceptions import CSRFMismatch, NoPendingFlow
from .models import PKCEParams

logger = logging.getLogger(__name__)


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode('utf-8').rstrip('=')


def challenge_for(code_verifier: str) -> str:
    """Compute the S256 code challenge for a verifier"""
    return _b64url(hashlib.sha256(code_verifier.encode('utf-8')).digest())


def generate_pkce(provider_id: str, session_id: Optional[str] = None) -> PKCEParams:
    """Generate fresh PKCE parameters for one authorization attempt

    Args:
        provider_id: Provider the attempt belongs to
        session_id: Optional server session id

    Returns:
        PKCEParams with a 43-character verifier, its S256 challenge and a 32-hex-char state
    """
    code_verifier = _b64url(secrets.token_bytes(32))
    return PKCEParams(
        code_verifier=code_verifier,
        code_challenge=challenge_for(code_verifier),
        state=secrets.token_hex(16),
        provider_id=provider_id,
        session_id=session_id,
    )


def validate_callback(pending: Optional[PKCEParams], received_state: Optional[str]) -> PKCEParams:
    """Check a callback's state against the pending flow

    Args:
        pending: The pending flow, if any
        received_state: The ``state`` query parameter from the redirect

    Returns:
        The pending flow when the state matches

    Raises:
        NoPendingFlow: If no flow is pending
        CSRFMismatch: If the state does not match
    """
    if pending is None:
        raise NoPendingFlow()
    if not received_state:
        raise CSRFMismatch()
    # Bytes, so a non-ASCII state is a mismatch rather than a TypeError
    if not hmac.compare_digest(pending.state.encode("utf-8"), received_state.encode("utf-8")):
        raise CSRFMismatch()
    return pending


class PKCEManager:
    """Holds the single in-flight authorization attempt

    Starting a new attempt discards the previous one. The pending flow is
    consumed by the first callback, whether it succeeds or fails.
    """

    def __init__(self):
        self.pending: Optional[PKCEParams] = None

    def begin(self, provider_id: str, session_id: Optional[str] = None) -> PKCEParams:
        """Start a new attempt, replacing any pending one"""
        if self.pending is not None:
            logger.debug(f"Discarding pending flow for '{self.pending.provider_id}'")
        self.pending = generate_pkce(provider_id, session_id)
        return self.pending

    def adopt(self, params: PKCEParams) -> PKCEParams:
        """Make externally issued parameters the pending attempt (server flows)"""
        self.pending = params
        return params

    def validate_callback(self, received_state: Optional[str]) -> PKCEParams:
        """Validate a callback against the pending attempt

        Raises:
            NoPendingFlow: If no flow is pending
            CSRFMismatch: If the state does not match
        """
        return validate_callback(self.pending, received_state)

    def clear(self):
        """Forget the pending attempt"""
        self.pending = None
