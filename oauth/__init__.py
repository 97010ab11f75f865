"""OAuth authentication package for provider sign-in and token lifecycle"""

import logging
import webbrowser
from typing import Any, Callable, Dict, List, Optional

import httpx

from exceptions import OAuthFlowError, ProviderNotFound
from providers.registry import ProviderRegistry
from settings import OAUTH_CALLBACK_TIMEOUT, REQUEST_TIMEOUT
from utils.events import EventHooks
from .authorization import build_authorization_url
from .callback_server import CallbackResult, OAuthCallbackServer
from .models import PKCEParams, ProviderTokens
from .normalizers import normalize_user
from .pkce import PKCEManager, generate_pkce, validate_callback
from .server_proxy import (
    ServerProviderError,
    exchange_server_code,
    fetch_server_authorization_url,
    fetch_server_providers,
)
from .storage import ProviderTokenStorage
from .token_exchange import exchange_code
from .token_manager import TokenManager

logger = logging.getLogger(__name__)


class OAuthManager:
    """OAuth flow orchestration

    This class drives the interactive authentication flow:
    - PKCE generation and the single pending attempt
    - Authorization URL construction and browser launch
    - Callback validation and token exchange (direct or via a server provider)
    - Persisting tokens and notifying observers

    Observers registered on ``hooks`` receive ``auth_success`` with
    ``(provider_id, tokens)`` and ``auth_error`` with ``(provider_id, error)``.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        storage: ProviderTokenStorage,
        token_manager: TokenManager,
        hooks: Optional[EventHooks] = None,
        open_browser: Callable[[str], Any] = webbrowser.open,
        timeout: float = REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.registry = registry
        self.storage = storage
        self.token_manager = token_manager
        self.hooks = hooks or EventHooks()
        self.open_browser = open_browser
        self.timeout = timeout
        self.transport = transport
        self.pkce = PKCEManager()

    # Flow start
    def start_provider_flow(self, provider_id: str) -> str:
        """Begin a direct authorization attempt and open the consent page

        Args:
            provider_id: Provider to sign in with

        Returns:
            Authorization URL that was opened

        Raises:
            ProviderNotFound: If the provider is unknown
            OAuthFlowError: If the provider has no client id
        """
        provider = self.registry.get_provider(provider_id)
        if not provider.is_available:
            raise OAuthFlowError(f"Provider '{provider_id}' has no client id configured")

        pkce = self.pkce.begin(provider_id)
        auth_url = build_authorization_url(provider, pkce)
        logger.info(f"Starting OAuth flow for {provider.name}")
        self.open_browser(auth_url)
        return auth_url

    async def start_server_flow(self, server_id: str, provider: str) -> str:
        """Begin an authorization attempt relayed through a server provider

        Args:
            server_id: Registered server provider id
            provider: Provider name on that server (e.g. "google")

        Returns:
            Authorization URL that was opened

        Raises:
            ProviderNotFound: If the server provider is unknown
            ServerProviderError: If the server cannot issue a URL
        """
        server = self.registry.get_server_provider(server_id)
        if server is None:
            raise ProviderNotFound(server_id)

        requested = generate_pkce(provider)
        relay_token = await self.token_manager.relay_token()
        issued = await fetch_server_authorization_url(
            server,
            provider,
            state=requested.state,
            relay_token=relay_token,
            timeout=self.timeout,
            transport=self.transport,
        )
        self.pkce.adopt(PKCEParams(
            code_verifier=requested.code_verifier,
            code_challenge=requested.code_challenge,
            state=issued["state"],
            provider_id=provider,
            session_id=issued["session_id"],
            server_id=server_id,
        ))
        logger.info(f"Starting OAuth flow for {provider} via {server.name}")
        self.open_browser(issued["authorization_url"])
        return issued["authorization_url"]

    # Callback
    async def handle_callback(
        self,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str] = None,
        error_description: Optional[str] = None,
    ) -> ProviderTokens:
        """Complete the pending attempt with the redirect's parameters

        The pending attempt is discarded whatever the outcome.

        Returns:
            The stored ProviderTokens

        Raises:
            NoPendingFlow: If no attempt is pending
            CSRFMismatch: If the state does not match
            OAuthFlowError: If the provider reported an error
            TokenExchangeFailed: If the token endpoint rejected the code
        """
        pending = self.pkce.pending
        provider_id = pending.provider_id if pending else None
        try:
            pending = self.pkce.validate_callback(state)
            if error:
                raise OAuthFlowError(f"{error}: {error_description}" if error_description else error)
            if not code:
                raise OAuthFlowError("Callback did not include an authorization code")

            tokens = await self._exchange(pending, code)
            tokens = self.storage.save_tokens(tokens)
        except Exception as e:
            self.hooks.emit("auth_error", provider_id, e)
            raise
        finally:
            self.pkce.clear()

        logger.info(f"Signed in to {provider_id}")
        self.hooks.emit("auth_success", provider_id, tokens)
        return tokens

    async def _exchange(self, pending: PKCEParams, code: str) -> ProviderTokens:
        if pending.server_id:
            server = self.registry.get_server_provider(pending.server_id)
            if server is None:
                raise ProviderNotFound(pending.server_id)
            return await exchange_server_code(
                server,
                pending.provider_id,
                code,
                pending.state,
                pending.session_id,
                relay_token=await self.token_manager.relay_token(),
                timeout=self.timeout,
                transport=self.transport,
            )

        provider = self.registry.get_provider(pending.provider_id)
        return await exchange_code(provider, code, pending, timeout=self.timeout, transport=self.transport)

    async def login(
        self,
        provider_id: str,
        server_id: Optional[str] = None,
        callback_server: Optional[OAuthCallbackServer] = None,
        timeout: float = OAUTH_CALLBACK_TIMEOUT,
    ) -> Optional[ProviderTokens]:
        """Run a complete interactive sign-in using the local redirect server

        Returns:
            Stored ProviderTokens, or None if the user did not finish in time
        """
        server = callback_server or OAuthCallbackServer()
        await server.start()
        try:
            if server_id:
                await self.start_server_flow(server_id, provider_id)
            else:
                self.start_provider_flow(provider_id)

            result: Optional[CallbackResult] = await server.wait_for_callback(timeout)
            if result is None:
                self.pkce.clear()
                return None
            return await self.handle_callback(result.code, result.state, result.error, result.error_description)
        finally:
            await server.stop()

    # Tokens
    async def get_valid_token(self, provider_id: str) -> Optional[str]:
        """Get a valid access token for a provider, refreshing when needed"""
        return await self.token_manager.get_valid_provider_token(provider_id)

    def logout(self, provider_id: str) -> bool:
        """Forget a provider's stored tokens"""
        return self.storage.remove_tokens(provider_id)

    def provider_status(self) -> List[Dict[str, Any]]:
        """Authentication status for every known provider and stored token"""
        provider_ids = [p.id for p in self.registry.list_providers()]
        for provider_id in self.storage.provider_ids():
            if provider_id not in provider_ids:
                provider_ids.append(provider_id)
        return [self.storage.get_status(provider_id) for provider_id in provider_ids]

    async def list_server_oauth_providers(self, server_id: str) -> List[Dict[str, Any]]:
        """OAuth providers a server provider can relay"""
        server = self.registry.get_server_provider(server_id)
        if server is None:
            raise ProviderNotFound(server_id)
        return await fetch_server_providers(
            server,
            relay_token=await self.token_manager.relay_token(),
            timeout=self.timeout,
            transport=self.transport,
        )


__all__ = [
    "OAuthManager",
    "TokenManager",
    "ProviderTokenStorage",
    "ProviderTokens",
    "PKCEParams",
    "PKCEManager",
    "OAuthCallbackServer",
    "ServerProviderError",
    "build_authorization_url",
    "exchange_code",
    "generate_pkce",
    "validate_callback",
    "normalize_user",
]
