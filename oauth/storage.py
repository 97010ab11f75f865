"""Encrypted per-provider token storage"""

import logging
import time
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from utils.storage import EncryptedConfigStore
from .models import ProviderTokens

logger = logging.getLogger(__name__)


class ProviderTokenStorage:
    """Persists one ProviderTokens record per provider id"""

    def __init__(self, store: EncryptedConfigStore):
        self.store = store

    def save_tokens(self, tokens: ProviderTokens) -> ProviderTokens:
        """Store tokens, keeping the original ``stored_at`` on updates

        Raises:
            PersistenceFailed: If the store cannot be written
        """
        def apply(data):
            now = int(time.time() * 1000)
            previous = data.get(tokens.provider_id) or {}
            record = tokens.model_copy(update={
                "stored_at": previous.get("stored_at") or now,
                "updated_at": now,
            })
            data[tokens.provider_id] = record.model_dump()
            return record

        record = self.store.update(apply)
        logger.debug(f"Stored tokens for {tokens.provider_id}")
        return record

    def load_tokens(self, provider_id: str) -> Optional[ProviderTokens]:
        """Load tokens for a provider, or None if absent or unreadable"""
        raw = self.store.load().get(provider_id)
        if raw is None:
            return None
        try:
            return ProviderTokens.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Discarding malformed token record for {provider_id}: {e}")
            return None

    def all_tokens(self) -> List[ProviderTokens]:
        """Every readable token record"""
        records = []
        for provider_id in self.store.load():
            tokens = self.load_tokens(provider_id)
            if tokens is not None:
                records.append(tokens)
        return records

    def provider_ids(self) -> List[str]:
        return list(self.store.load().keys())

    def remove_tokens(self, provider_id: str) -> bool:
        """Forget a provider's tokens

        Returns:
            True if a record was removed
        """
        if provider_id not in self.store.load():
            return False
        self.store.update(lambda data: data.pop(provider_id, None))
        logger.info(f"Removed stored tokens for {provider_id}")
        return True

    def clear_all(self):
        self.store.clear()

    def get_status(self, provider_id: str) -> Dict[str, Any]:
        """Get token status without exposing secrets"""
        tokens = self.load_tokens(provider_id)
        if tokens is None:
            return {"provider_id": provider_id, "authenticated": False, "is_expired": True, "user": None}

        return {
            "provider_id": provider_id,
            "authenticated": True,
            "is_expired": tokens.is_expired(),
            "expires_at": tokens.expires_at,
            "has_refresh_token": bool(tokens.refresh_token),
            "user": tokens.user,
        }
