"""
OAuth provider definitions and the registry that persists them.
"""
from providers.builtin import BUILTIN_PROVIDER_IDS, builtin_providers
from providers.models import ProviderConfig, ServerProvider
from providers.registry import ProviderRegistry

__all__ = [
    'BUILTIN_PROVIDER_IDS',
    'builtin_providers',
    'ProviderConfig',
    'ServerProvider',
    'ProviderRegistry',
]
