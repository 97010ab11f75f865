"""Shared fixtures for the keyboard agent tests."""

import time

import pytest
from cryptography.fernet import Fernet

from oauth.models import ProviderTokens
from oauth.storage import ProviderTokenStorage
from providers import ProviderConfig, ProviderRegistry
from utils.storage import EncryptedConfigStore

ACME_TOKEN_URL = "https://auth.acme.test/oauth/token"
REDIRECT_URI = "http://localhost:8082/callback"


def now_ms() -> int:
    return int(time.time() * 1000)


def make_tokens(provider_id: str = "acme", expires_in_ms: int = 3_600_000, **overrides) -> ProviderTokens:
    """Build a stored-token record expiring ``expires_in_ms`` from now."""
    fields = {
        "provider_id": provider_id,
        "access_token": "access-old",
        "refresh_token": "refresh-old",
        "expires_at": now_ms() + expires_in_ms,
    }
    fields.update(overrides)
    return ProviderTokens(**fields)


def make_provider(**overrides) -> ProviderConfig:
    fields = {
        "id": "acme",
        "name": "Acme",
        "client_id": "acme-client",
        "authorization_url": "https://auth.acme.test/oauth/authorize",
        "token_url": ACME_TOKEN_URL,
        "scopes": ["openid", "email"],
        "use_pkce": True,
        "redirect_uri": REDIRECT_URI,
        "is_custom": True,
    }
    fields.update(overrides)
    return ProviderConfig(**fields)


@pytest.fixture
def cipher():
    return Fernet(Fernet.generate_key())


@pytest.fixture
def provider_store(tmp_path, cipher):
    return EncryptedConfigStore(str(tmp_path / "providers.encrypted"), cipher)


@pytest.fixture
def token_store(tmp_path, cipher):
    return EncryptedConfigStore(str(tmp_path / "oauth-tokens.encrypted"), cipher)


@pytest.fixture
def registry(provider_store):
    registry = ProviderRegistry(provider_store, redirect_uri=REDIRECT_URI)
    registry.seed_builtin_providers()
    return registry


@pytest.fixture
def token_storage(token_store):
    return ProviderTokenStorage(token_store)


@pytest.fixture
def acme(registry):
    return registry.upsert(make_provider())
