"""
Provider Registry

Keeps OAuth provider definitions and server providers in a single
encrypted document with two sections:

    {"providers": {id: ProviderConfig}, "server_providers": [ServerProvider]}

Every mutation is a full read-modify-write of that document under the
store lock and is persisted before the call returns.
"""
import logging
from typing import Dict, List, Optional

from exceptions import ProviderNotFound
from utils.storage import EncryptedConfigStore
from .builtin import BUILTIN_PROVIDER_IDS, builtin_providers
from .models import ProviderConfig, ServerProvider, now_ms

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Registry of OAuth providers and server providers"""

    def __init__(self, store: EncryptedConfigStore, redirect_uri: Optional[str] = None):
        self.store = store
        self.redirect_uri = redirect_uri

    def _load(self) -> Dict:
        data = self.store.load()
        data.setdefault("providers", {})
        data.setdefault("server_providers", [])
        return data

    def _update(self, mutate):
        def apply(data):
            data.setdefault("providers", {})
            data.setdefault("server_providers", [])
            return mutate(data)
        return self.store.update(apply)

    # ------------------------------------------------------------------
    # OAuth providers
    # ------------------------------------------------------------------

    def seed_builtin_providers(self) -> List[str]:
        """Insert built-in providers that are not stored yet

        Returns:
            Ids of the providers that were seeded
        """
        defaults = builtin_providers(self.redirect_uri)

        def seed(data):
            seeded = []
            for provider_id, config in defaults.items():
                if provider_id in data["providers"]:
                    continue
                timestamp = now_ms()
                config = config.model_copy(update={"created_at": timestamp, "updated_at": timestamp})
                data["providers"][provider_id] = config.model_dump()
                seeded.append(provider_id)
            return seeded

        seeded = self._update(seed)
        if seeded:
            logger.info(f"Seeded built-in providers: {', '.join(seeded)}")
        return seeded

    def find_provider(self, provider_id: str) -> Optional[ProviderConfig]:
        """Get a provider by id, or None if unknown"""
        raw = self._load()["providers"].get(provider_id)
        if raw is None:
            return None
        return ProviderConfig.model_validate(raw)

    def get_provider(self, provider_id: str) -> ProviderConfig:
        """Get a provider by id

        Raises:
            ProviderNotFound: If no provider has this id
        """
        provider = self.find_provider(provider_id)
        if provider is None:
            raise ProviderNotFound(provider_id)
        return provider

    def has_provider(self, provider_id: str) -> bool:
        return provider_id in self._load()["providers"]

    def list_providers(self) -> List[ProviderConfig]:
        """All providers sorted by display name"""
        providers = [ProviderConfig.model_validate(raw) for raw in self._load()["providers"].values()]
        return sorted(providers, key=lambda p: p.name.lower())

    def list_available(self) -> List[ProviderConfig]:
        """Providers with a non-empty client id, sorted by display name"""
        return [p for p in self.list_providers() if p.is_available]

    def upsert(self, config: ProviderConfig) -> ProviderConfig:
        """Insert or replace a provider, preserving its original creation time

        Raises:
            PersistenceFailed: If the registry cannot be written
        """
        def apply(data):
            existing = data["providers"].get(config.id)
            timestamp = now_ms()
            created_at = (existing or {}).get("created_at") or timestamp
            stored = config.model_copy(update={"created_at": created_at, "updated_at": timestamp})
            data["providers"][config.id] = stored.model_dump()
            return stored

        stored = self._update(apply)
        logger.info(f"Saved provider config '{config.id}'")
        return stored

    def remove(self, provider_id: str):
        """Remove a provider; built-in providers revert to their defaults

        Removing an unknown id is a no-op.
        """
        defaults = builtin_providers(self.redirect_uri)

        def apply(data):
            data["providers"].pop(provider_id, None)
            if provider_id in defaults:
                timestamp = now_ms()
                restored = defaults[provider_id].model_copy(
                    update={"created_at": timestamp, "updated_at": timestamp}
                )
                data["providers"][provider_id] = restored.model_dump()

        # The existence check and the write share one critical section
        with self.store.lock:
            if provider_id not in defaults and not self.has_provider(provider_id):
                return
            self._update(apply)
        if provider_id in defaults:
            logger.info(f"Reset built-in provider '{provider_id}' to defaults")
        else:
            logger.info(f"Removed provider '{provider_id}'")

    def update_custom(self, config: ProviderConfig) -> ProviderConfig:
        """Create or edit a user-defined provider

        Raises:
            ValueError: If the id belongs to a built-in provider
        """
        existing = self.find_provider(config.id)
        if config.id in BUILTIN_PROVIDER_IDS or (existing and not existing.is_custom):
            raise ValueError(f"Provider '{config.id}' is built-in and cannot be edited as custom")
        return self.upsert(config.model_copy(update={"is_custom": True}))

    def remove_custom(self, provider_id: str):
        """Delete a user-defined provider

        Raises:
            ValueError: If the provider is built-in
        """
        existing = self.find_provider(provider_id)
        if existing is None:
            return
        if not existing.is_custom:
            raise ValueError(f"Provider '{provider_id}' is built-in and cannot be deleted")
        self.remove(provider_id)

    # ------------------------------------------------------------------
    # Server providers
    # ------------------------------------------------------------------

    def list_server_providers(self) -> List[ServerProvider]:
        """Server providers in registration order"""
        return [ServerProvider.model_validate(raw) for raw in self._load()["server_providers"]]

    def get_server_provider(self, server_id: str) -> Optional[ServerProvider]:
        for server in self.list_server_providers():
            if server.id == server_id:
                return server
        return None

    def add_server_provider(self, server: ServerProvider) -> ServerProvider:
        """Register a server provider, replacing one with the same id in place"""
        def apply(data):
            entries = data["server_providers"]
            for index, raw in enumerate(entries):
                if raw.get("id") == server.id:
                    entries[index] = server.model_dump()
                    return
            entries.append(server.model_dump())

        self._update(apply)
        logger.info(f"Saved server provider '{server.id}' ({server.url})")
        return server

    def remove_server_provider(self, server_id: str) -> bool:
        """Remove a server provider; unknown ids are ignored

        Returns:
            True if a server provider was removed
        """
        def apply(data):
            before = len(data["server_providers"])
            data["server_providers"] = [s for s in data["server_providers"] if s.get("id") != server_id]
            return len(data["server_providers"]) != before

        removed = self._update(apply)
        if removed:
            logger.info(f"Removed server provider '{server_id}'")
        return removed
