"""OAuth token exchange functionality"""

import logging
import time
from typing import Any, Dict, Optional

import httpx

from exceptions import TokenExchangeFailed
from providers.models import ProviderConfig
from settings import REQUEST_TIMEOUT
from .models import PKCEParams, ProviderTokens
from .normalizers import normalize_user

logger = logging.getLogger(__name__)

FORM_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded",
    "Accept": "application/json",
}


async def fetch_user_profile(
    provider: ProviderConfig,
    access_token: str,
    timeout: float = REQUEST_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Optional[Dict[str, Any]]:
    """Fetch and normalize the signed-in user's profile

    Best effort: any failure is logged and yields None.

    Args:
        provider: Provider configuration
        access_token: Freshly issued access token
        timeout: Request timeout in seconds
        transport: Optional httpx transport (tests)

    Returns:
        Normalized profile dict or None
    """
    if not provider.user_info_url:
        return None

    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.get(
                provider.user_info_url,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/json",
                },
            )
        if response.status_code != 200:
            logger.warning(f"User info request for {provider.id} returned {response.status_code}")
            return None
        data = response.json()
        if not isinstance(data, dict):
            logger.warning(f"User info for {provider.id} is not a JSON object")
            return None
        return normalize_user(provider.id, data)
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"Failed to fetch user info for {provider.id}: {e}")
        return None


async def exchange_code(
    provider: ProviderConfig,
    code: str,
    pkce: Optional[PKCEParams] = None,
    timeout: float = REQUEST_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ProviderTokens:
    """Exchange an authorization code for tokens

    Args:
        provider: Provider configuration
        code: Authorization code from the redirect
        pkce: Parameters of the attempt (verifier sent only for PKCE providers)
        timeout: Request timeout in seconds
        transport: Optional httpx transport (tests)

    Returns:
        ProviderTokens with the normalized user profile when available

    Raises:
        TokenExchangeFailed: If the token endpoint rejects the request
    """
    body = {
        "client_id": provider.client_id,
        "redirect_uri": provider.redirect_uri,
        "code": code,
        "grant_type": "authorization_code",
    }
    if provider.client_secret:
        body["client_secret"] = provider.client_secret
    if provider.use_pkce and pkce is not None:
        body["code_verifier"] = pkce.code_verifier

    logger.info(f"Exchanging authorization code with {provider.name}...")
    issued_at = int(time.time() * 1000)
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        response = await client.post(provider.token_url, data=body, headers=FORM_HEADERS)

    if response.status_code < 200 or response.status_code >= 300:
        raise TokenExchangeFailed(response.status_code, response.text)

    try:
        token_data = response.json()
    except ValueError:
        raise TokenExchangeFailed(response.status_code, response.text, "Token endpoint returned invalid JSON")

    # GitHub reports errors with a 200 status
    if not isinstance(token_data, dict) or not isinstance(token_data.get("access_token"), str):
        raise TokenExchangeFailed(response.status_code, response.text)

    user = await fetch_user_profile(provider, token_data["access_token"], timeout, transport)
    try:
        tokens = ProviderTokens.from_token_response(provider.id, token_data, issued_at_ms=issued_at, user=user)
    except (ValueError, TypeError) as e:
        raise TokenExchangeFailed(response.status_code, response.text, f"Token endpoint returned malformed tokens: {e}")
    logger.info(f"OAuth tokens obtained for {provider.name}")
    return tokens
