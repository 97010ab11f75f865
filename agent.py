"""
KeyboardAgent: wires the core components together.

Desktop shells, tray menus and other collaborators talk to the agent
through this class only: provider management, sign-in, tokens, the
connection key and approval decisions, plus observer registration.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

import httpx
from fastapi import FastAPI

import settings
from channel import ApprovalChannel, ApprovalQueue, ChannelServer, ConnectionKeyManager, build_app
from channel.models import ApprovalMessage
from oauth import OAuthManager, ProviderTokenStorage, TokenManager
from providers import ProviderConfig, ProviderRegistry, ServerProvider
from utils.encryption import EncryptionKeyManager
from utils.events import EventHooks
from utils.storage import EncryptedConfigStore

logger = logging.getLogger(__name__)


class KeyboardAgent:
    """Local agent core

    Args:
        storage_dir: Directory for the encrypted stores and key files
        encryption_key: Fernet key overriding the generated key file
        ws_port: Port of the approval channel
        trusted_hosts: Peer hosts allowed to connect (loopback by default)
        transport: Optional httpx transport for every outbound call (tests)
        open_browser: Callable used to open consent pages
    """

    def __init__(
        self,
        storage_dir: Optional[str] = None,
        encryption_key: Optional[str] = settings.ENCRYPTION_KEY,
        ws_port: int = settings.WS_PORT,
        trusted_hosts=None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        open_browser: Optional[Callable[[str], Any]] = None,
    ):
        if storage_dir:
            providers_file = f"{storage_dir}/providers.encrypted"
            tokens_file = f"{storage_dir}/oauth-tokens.encrypted"
            ws_key_file = f"{storage_dir}/ws-key.json"
            encryption_key_file = f"{storage_dir}/encryption-key.json"
        else:
            providers_file = settings.PROVIDERS_FILE
            tokens_file = settings.TOKENS_FILE
            ws_key_file = settings.WS_KEY_FILE
            encryption_key_file = settings.ENCRYPTION_KEY_FILE

        self.ws_port = ws_port
        self.hooks = EventHooks()

        self.encryption = EncryptionKeyManager(key_file=encryption_key_file, env_key=encryption_key)
        cipher = self.encryption.cipher()
        self.registry = ProviderRegistry(EncryptedConfigStore(providers_file, cipher))
        self.token_storage = ProviderTokenStorage(EncryptedConfigStore(tokens_file, cipher))
        self.token_manager = TokenManager(
            self.registry,
            self.token_storage,
            relay_token_getter=self._primary_access_token,
            transport=transport,
        )

        oauth_kwargs = {"hooks": self.hooks, "transport": transport}
        if open_browser is not None:
            oauth_kwargs["open_browser"] = open_browser
        self.oauth = OAuthManager(self.registry, self.token_storage, self.token_manager, **oauth_kwargs)

        self.key_manager = ConnectionKeyManager(key_file=ws_key_file, hooks=self.hooks)
        self.approvals = ApprovalQueue(hooks=self.hooks)
        channel_kwargs = {"trusted_hosts": trusted_hosts} if trusted_hosts else {}
        self.channel = ApprovalChannel(self.approvals, self.key_manager, oauth=self.oauth, **channel_kwargs)

        self.registry.seed_builtin_providers()
        self.key_manager.load_or_generate()

    async def _primary_access_token(self) -> Optional[str]:
        # Relay calls authenticate with the primary token as stored; refreshing
        # it here would recurse into the refresh being performed
        tokens = self.token_storage.load_tokens(settings.PRIMARY_PROVIDER)
        if tokens is None or tokens.is_expired():
            return None
        return tokens.access_token

    # Observers
    def on_decision(self, callback):
        """``callback(message, payload)`` after every decision"""
        return self.approvals.on_decision(callback)

    def on_message(self, callback):
        """``callback(message)`` for every approval request received"""
        return self.approvals.on_message(callback)

    def on_key_rotated(self, callback):
        """``callback(key_record)`` whenever a new connection key is generated"""
        return self.key_manager.on_key_rotated(callback)

    def on_auth_success(self, callback):
        """``callback(provider_id, tokens)`` after a successful sign-in"""
        return self.hooks.on("auth_success", callback)

    def on_auth_error(self, callback):
        """``callback(provider_id, error)`` after a failed sign-in"""
        return self.hooks.on("auth_error", callback)

    # Providers
    def get_provider_config(self, provider_id: str) -> ProviderConfig:
        return self.registry.get_provider(provider_id)

    def save_provider_config(self, config: ProviderConfig) -> ProviderConfig:
        return self.registry.upsert(config)

    def remove_provider_config(self, provider_id: str):
        self.registry.remove(provider_id)

    def list_available_providers(self) -> List[ProviderConfig]:
        return self.registry.list_available()

    def add_server_provider(self, server: ServerProvider) -> ServerProvider:
        return self.registry.add_server_provider(server)

    def remove_server_provider(self, server_id: str) -> bool:
        return self.registry.remove_server_provider(server_id)

    def list_server_providers(self) -> List[ServerProvider]:
        return self.registry.list_server_providers()

    # Tokens
    async def get_valid_access_token(self, provider_id: str) -> Optional[str]:
        return await self.token_manager.get_valid_provider_token(provider_id)

    def provider_status(self) -> List[Dict[str, Any]]:
        return self.oauth.provider_status()

    # Connection key
    def get_connection_key(self) -> str:
        return self.key_manager.current().key

    def get_connection_url(self) -> str:
        return self.key_manager.connection_url(port=self.ws_port)

    def regenerate_connection_key(self) -> str:
        return self.key_manager.regenerate().key

    # Approvals
    def submit_message(self, data: Dict[str, Any]) -> Optional[ApprovalMessage]:
        return self.approvals.submit(data)

    async def decide_message(self, message_id: str, status: str, feedback: Optional[str] = None) -> Optional[ApprovalMessage]:
        return await self.channel.decide(message_id, status, feedback)

    # Serving
    async def on_startup(self):
        """Refresh any expired provider tokens before serving clients"""
        refreshed = await self.token_manager.refresh_expired_on_startup()
        if refreshed:
            logger.info(f"Refreshed tokens on startup: {', '.join(refreshed)}")

    def build_app(self) -> FastAPI:
        return build_app(self.channel, on_startup=self.on_startup)

    def create_server(self) -> ChannelServer:
        return ChannelServer(self.build_app(), port=self.ws_port)
