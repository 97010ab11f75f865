"""OAuth token manager for retrieving valid tokens

Refresh runs in two tiers: the provider's own token endpoint first (when
a client id is configured), then every server provider in registration
order. At most one refresh per provider id is in flight at a time;
concurrent callers share its outcome, since refresh tokens are often
single-use.
"""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Union

import httpx

from exceptions import PersistenceFailed, RefreshExhausted
from providers.registry import ProviderRegistry
from settings import REFRESH_BUFFER_SECONDS, REQUEST_TIMEOUT
from .models import ProviderTokens
from .server_proxy import refresh_via_server
from .storage import ProviderTokenStorage
from .token_refresh import DirectRefreshError, refresh_direct

logger = logging.getLogger(__name__)

RelayTokenGetter = Callable[[], Union[Optional[str], Awaitable[Optional[str]]]]


class TokenManager:
    """Refreshes and hands out valid provider access tokens"""

    def __init__(
        self,
        registry: ProviderRegistry,
        storage: ProviderTokenStorage,
        relay_token_getter: Optional[RelayTokenGetter] = None,
        buffer_seconds: int = REFRESH_BUFFER_SECONDS,
        timeout: float = REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.registry = registry
        self.storage = storage
        self.relay_token_getter = relay_token_getter
        self.buffer_seconds = buffer_seconds
        self.timeout = timeout
        self.transport = transport
        self._in_flight: Dict[str, asyncio.Task] = {}

    async def relay_token(self) -> Optional[str]:
        if self.relay_token_getter is None:
            return None
        token = self.relay_token_getter()
        if inspect.isawaitable(token):
            token = await token
        return token

    async def refresh(self, provider_id: str, refresh_token: str) -> ProviderTokens:
        """Refresh a provider's tokens, coalescing concurrent calls

        Args:
            provider_id: Provider whose tokens to refresh
            refresh_token: Current refresh token

        Returns:
            New ProviderTokens (already persisted)

        Raises:
            RefreshExhausted: If every refresh path failed
        """
        task = self._in_flight.get(provider_id)
        if task is None:
            task = asyncio.ensure_future(self._refresh_once(provider_id, refresh_token))
            self._in_flight[provider_id] = task

            def _clear_in_flight(done: asyncio.Task):
                if self._in_flight.get(provider_id) is done:
                    del self._in_flight[provider_id]

            task.add_done_callback(_clear_in_flight)
        else:
            logger.debug(f"Joining in-flight refresh for {provider_id}")

        # A cancelled waiter must not cancel the refresh other callers share
        return await asyncio.shield(task)

    async def _refresh_once(self, provider_id: str, refresh_token: str) -> ProviderTokens:
        tokens = await self._refresh_direct(provider_id, refresh_token)
        if tokens is None:
            tokens = await self._refresh_via_servers(provider_id, refresh_token)
        if tokens is None:
            raise RefreshExhausted(provider_id)

        previous = self.storage.load_tokens(provider_id)
        if tokens.user is None and previous is not None:
            tokens = tokens.model_copy(update={"user": previous.user})
        try:
            tokens = self.storage.save_tokens(tokens)
        except PersistenceFailed as e:
            # The refreshed token is still usable for this session
            logger.error(f"Refreshed tokens for {provider_id} could not be saved: {e}")
        return tokens

    async def _refresh_direct(self, provider_id: str, refresh_token: str) -> Optional[ProviderTokens]:
        provider = self.registry.find_provider(provider_id)
        if provider is None or not provider.is_available:
            logger.debug(f"No client id for {provider_id}, skipping direct refresh")
            return None

        try:
            return await refresh_direct(provider, refresh_token, timeout=self.timeout, transport=self.transport)
        except (DirectRefreshError, httpx.HTTPError) as e:
            logger.warning(f"Direct refresh failed for {provider_id}: {e}")
            return None

    async def _refresh_via_servers(self, provider_id: str, refresh_token: str) -> Optional[ProviderTokens]:
        servers = self.registry.list_server_providers()
        if not servers:
            return None

        relay_token = await self.relay_token()
        for server in servers:
            tokens = await refresh_via_server(
                server,
                provider_id,
                refresh_token,
                relay_token=relay_token,
                timeout=self.timeout,
                transport=self.transport,
            )
            if tokens is not None:
                return tokens
        return None

    def _forget(self, provider_id: str):
        try:
            self.storage.remove_tokens(provider_id)
        except PersistenceFailed as e:
            logger.error(f"Could not forget tokens for {provider_id}: {e}")

    async def get_valid_access_token(self, tokens: ProviderTokens) -> Optional[str]:
        """Return a usable access token for ``tokens``

        The token is returned unchanged while it is outside the refresh
        buffer. Otherwise it is refreshed; if that fails the stored record
        is forgotten and None is returned.

        Args:
            tokens: Current token record

        Returns:
            A valid access token, or None if the user must sign in again
        """
        if not tokens.is_expired(self.buffer_seconds):
            return tokens.access_token

        provider_id = tokens.provider_id
        if not tokens.refresh_token:
            logger.info(f"Token for {provider_id} expired and cannot be refreshed")
            self._forget(provider_id)
            return None

        logger.info(f"Token for {provider_id} expiring, attempting automatic refresh...")
        try:
            refreshed = await self.refresh(provider_id, tokens.refresh_token)
        except RefreshExhausted as e:
            logger.error(str(e))
            self._forget(provider_id)
            return None
        return refreshed.access_token

    async def get_valid_provider_token(self, provider_id: str) -> Optional[str]:
        """Load the stored tokens for a provider and return a valid access token"""
        tokens = self.storage.load_tokens(provider_id)
        if tokens is None:
            return None
        return await self.get_valid_access_token(tokens)

    async def refresh_expired_on_startup(self) -> List[str]:
        """Refresh every stored token that is expired or about to expire

        Returns:
            Provider ids whose tokens were refreshed successfully
        """
        expired = [t for t in self.storage.all_tokens() if t.is_expired(self.buffer_seconds)]
        if not expired:
            return []

        logger.info(f"Refreshing {len(expired)} expired provider token(s) on startup")
        results = await asyncio.gather(*(self.get_valid_access_token(t) for t in expired))
        return [t.provider_id for t, token in zip(expired, results) if token is not None]
