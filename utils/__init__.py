"""Shared utilities package for keyboard-agent"""

from .storage import EncryptedConfigStore
from .encryption import EncryptionKeyManager
from .events import EventHooks

__all__ = [
    "EncryptedConfigStore",
    "EncryptionKeyManager",
    "EventHooks",
]
