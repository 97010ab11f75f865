"""Calls to server providers (remote OAuth relays)

A server provider performs authorization, code exchange and refresh on
behalf of the agent. Every endpoint accepts an optional bearer token
that authenticates the relay call itself and answers ``{success, ...}``.
"""

import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from exceptions import KeyboardAgentError, TokenExchangeFailed
from providers.models import ServerProvider
from settings import REQUEST_TIMEOUT
from .models import ProviderTokens

logger = logging.getLogger(__name__)


class ServerProviderError(KeyboardAgentError):
    """A server provider call failed or answered ``success: false``"""


def _headers(relay_token: Optional[str], json_body: bool = False) -> Dict[str, str]:
    headers = {"Accept": "application/json"}
    if json_body:
        headers["Content-Type"] = "application/json"
    if relay_token:
        headers["Authorization"] = f"Bearer {relay_token}"
    return headers


def _successful_body(server: ServerProvider, response: httpx.Response) -> Dict[str, Any]:
    if response.status_code < 200 or response.status_code >= 300:
        raise ServerProviderError(
            f"{server.name} responded with status {response.status_code}: {response.text}"
        )
    try:
        data = response.json()
    except ValueError:
        raise ServerProviderError(f"{server.name} returned invalid JSON")
    if not isinstance(data, dict) or not data.get("success"):
        raise ServerProviderError(f"{server.name} returned an unsuccessful response")
    return data


async def fetch_server_providers(
    server: ServerProvider,
    relay_token: Optional[str] = None,
    timeout: float = REQUEST_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[Dict[str, Any]]:
    """List the OAuth providers a server can relay

    Returns:
        List of ``{name, scopes, configured}`` dicts

    Raises:
        ServerProviderError: If the server call fails
    """
    url = f"{server.url}/api/oauth/providers"
    logger.debug(f"Fetching providers from {url}")
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        response = await client.get(url, headers=_headers(relay_token))

    data = _successful_body(server, response)
    providers = data.get("providers", [])
    logger.info(f"Found {len(providers)} providers on {server.name}")
    return providers


async def fetch_server_authorization_url(
    server: ServerProvider,
    provider: str,
    state: Optional[str] = None,
    relay_token: Optional[str] = None,
    timeout: float = REQUEST_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, str]:
    """Ask a server for an authorization URL

    Returns:
        Dict with ``authorization_url``, ``session_id`` and ``state``

    Raises:
        ServerProviderError: If the server call fails
    """
    url = f"{server.url}/api/oauth/authorize/{provider}"
    params = {"state": state} if state else None
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        response = await client.get(url, params=params, headers=_headers(relay_token))

    data = _successful_body(server, response)
    return {
        "authorization_url": data["authorization_url"],
        "session_id": data.get("session_id"),
        "state": data.get("state") or state,
    }


async def exchange_server_code(
    server: ServerProvider,
    provider: str,
    code: str,
    state: str,
    session_id: Optional[str],
    relay_token: Optional[str] = None,
    timeout: float = REQUEST_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ProviderTokens:
    """Exchange an authorization code through a server provider

    Raises:
        TokenExchangeFailed: If the server rejects the exchange
    """
    url = f"{server.url}/api/oauth/token/{provider}"
    body = {
        "code": code,
        "state": state,
        "session_id": session_id,
        "grant_type": "authorization_code",
    }
    issued_at = int(time.time() * 1000)
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        response = await client.post(url, json=body, headers=_headers(relay_token, json_body=True))

    if response.status_code < 200 or response.status_code >= 300:
        raise TokenExchangeFailed(response.status_code, response.text)
    try:
        data = response.json()
    except ValueError:
        raise TokenExchangeFailed(response.status_code, response.text, f"{server.name} returned invalid JSON")
    if not isinstance(data, dict) or not data.get("success") or "access_token" not in data:
        raise TokenExchangeFailed(response.status_code, response.text, f"Token exchange via {server.name} was unsuccessful")

    try:
        tokens = ProviderTokens.from_token_response(provider, data, issued_at_ms=issued_at, user=data.get("user"))
    except (ValueError, TypeError) as e:
        raise TokenExchangeFailed(response.status_code, response.text, f"{server.name} returned malformed tokens: {e}")
    logger.info(f"Exchanged code for {provider} tokens via {server.name}")
    return tokens


async def refresh_via_server(
    server: ServerProvider,
    provider_id: str,
    refresh_token: str,
    relay_token: Optional[str] = None,
    timeout: float = REQUEST_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Optional[ProviderTokens]:
    """Refresh a provider's tokens through a server provider

    Returns:
        New ProviderTokens, or None if this server could not refresh
    """
    url = f"{server.url}/api/oauth/refresh/{provider_id}"
    body = {"refresh_token": refresh_token, "grant_type": "refresh_token"}
    issued_at = int(time.time() * 1000)
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.post(url, json=body, headers=_headers(relay_token, json_body=True))
        data = _successful_body(server, response)
        if "access_token" not in data:
            raise ServerProviderError(f"{server.name} returned no access_token")
        tokens = ProviderTokens.from_token_response(
            provider_id,
            data,
            issued_at_ms=issued_at,
            fallback_refresh_token=refresh_token,
            user=data.get("user"),
        )
    except (httpx.HTTPError, ServerProviderError, ValueError, TypeError) as e:
        logger.warning(f"Server refresh via {server.name} failed for {provider_id}: {e}")
        return None

    logger.info(f"Refreshed {provider_id} tokens via {server.name}")
    return tokens
