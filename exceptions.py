"""Error taxonomy for the keyboard agent

Flow-integrity errors (state mismatch, missing flow, failed exchange) are
raised to the caller of the OAuth flow. Refresh failures are raised inside
the token manager and degrade to ``None`` at its public boundary.
"""

from typing import Optional


class KeyboardAgentError(Exception):
    """Base class for all keyboard agent errors"""


class OAuthFlowError(KeyboardAgentError):
    """An interactive OAuth flow could not be completed"""


class CSRFMismatch(OAuthFlowError):
    """The state returned by the provider does not match the pending flow"""

    def __init__(self, message: str = "OAuth state mismatch, possible CSRF attempt"):
        super().__init__(message)


class NoPendingFlow(OAuthFlowError):
    """A callback arrived but no authorization attempt is in progress"""

    def __init__(self, message: str = "No pending OAuth flow"):
        super().__init__(message)


class TokenExchangeFailed(OAuthFlowError):
    """The provider's token endpoint rejected the request

    Attributes:
        status: HTTP status code returned by the token endpoint
        body: Raw response body
    """

    def __init__(self, status: int, body: str, message: Optional[str] = None):
        self.status = status
        self.body = body
        super().__init__(message or f"Token exchange failed: {status} - {body}")


class RefreshExhausted(KeyboardAgentError):
    """Every refresh path (direct and all server providers) failed"""

    def __init__(self, provider_id: str):
        self.provider_id = provider_id
        super().__init__(f"All refresh methods failed for provider '{provider_id}'")


class PersistenceFailed(KeyboardAgentError):
    """Encrypted state could not be written to disk"""

    def __init__(self, path, cause: Optional[BaseException] = None):
        self.path = path
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Failed to persist {path}{detail}")


class ConnectionRejected(KeyboardAgentError):
    """A channel connection failed the loopback or key check"""

    def __init__(self, reason: str, host: Optional[str] = None):
        self.reason = reason
        self.host = host
        super().__init__(f"Connection rejected ({reason}) from {host or 'unknown host'}")


class ProviderNotFound(KeyboardAgentError):
    """No provider is registered under the requested id"""

    def __init__(self, provider_id: str):
        self.provider_id = provider_id
        super().__init__(f"Provider '{provider_id}' not found")


__all__ = [
    "KeyboardAgentError",
    "OAuthFlowError",
    "CSRFMismatch",
    "NoPendingFlow",
    "TokenExchangeFailed",
    "RefreshExhausted",
    "PersistenceFailed",
    "ConnectionRejected",
    "ProviderNotFound",
]
