"""OAuth token refresh functionality"""

import logging
import time
from typing import Optional

import httpx

from providers.models import ProviderConfig
from settings import REQUEST_TIMEOUT
from .models import ProviderTokens
from .token_exchange import FORM_HEADERS

logger = logging.getLogger(__name__)


class DirectRefreshError(Exception):
    """The provider's token endpoint refused a refresh"""


async def refresh_direct(
    provider: ProviderConfig,
    refresh_token: str,
    timeout: float = REQUEST_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ProviderTokens:
    """Refresh tokens against the provider's own token endpoint

    The old refresh token is kept when the provider does not rotate it.

    Args:
        provider: Provider configuration (must have a client id)
        refresh_token: Current refresh token
        timeout: Request timeout in seconds
        transport: Optional httpx transport (tests)

    Returns:
        New ProviderTokens

    Raises:
        DirectRefreshError: If the endpoint returns an error
        httpx.HTTPError: On transport failures
    """
    body = {
        "client_id": provider.client_id,
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
    }
    if provider.client_secret:
        body["client_secret"] = provider.client_secret

    issued_at = int(time.time() * 1000)
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        response = await client.post(provider.token_url, data=body, headers=FORM_HEADERS)

    if response.status_code != 200:
        raise DirectRefreshError(f"Token refresh failed: {response.status_code} {response.text}")

    try:
        token_data = response.json()
    except ValueError:
        raise DirectRefreshError("Token refresh returned invalid JSON")
    if not isinstance(token_data, dict):
        raise DirectRefreshError("Token refresh returned a non-object body")
    if "access_token" not in token_data:
        raise DirectRefreshError(f"Token refresh failed: {token_data.get('error', 'no access_token')}")

    try:
        tokens = ProviderTokens.from_token_response(
            provider.id,
            token_data,
            issued_at_ms=issued_at,
            fallback_refresh_token=refresh_token,
        )
    except (ValueError, TypeError) as e:
        # pydantic's ValidationError is a ValueError
        raise DirectRefreshError(f"Token refresh returned malformed tokens: {e}")

    logger.info(f"Successfully refreshed {provider.id} tokens directly")
    return tokens
