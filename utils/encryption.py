"""
At-rest encryption key management.

Uses Fernet (AES-128-CBC + HMAC-SHA256) from the ``cryptography`` library.
The active key is chosen in this order:

1. ``ENCRYPTION_KEY`` environment variable (a Fernet key)
2. The generated key file, while it is younger than the rotation window
3. A freshly generated key, persisted to the key file with 600 permissions

Rotating the key makes previously encrypted files unreadable; the stores
treat that as "no saved state" rather than an error.
"""

import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet

from settings import ENCRYPTION_KEY, ENCRYPTION_KEY_FILE, ENCRYPTION_KEY_MAX_AGE_DAYS
from utils.secure_files import read_json_record, write_json_record

logger = logging.getLogger(__name__)

KEY_FILE_VERSION = "1.0"
DAY_MS = 24 * 60 * 60 * 1000


class EncryptionKeyManager:
    """Resolves, persists and rotates the Fernet key used by the config stores"""

    def __init__(
        self,
        key_file: Optional[str] = None,
        env_key: Optional[str] = ENCRYPTION_KEY,
        max_age_days: int = ENCRYPTION_KEY_MAX_AGE_DAYS,
    ):
        self.key_file = Path(key_file if key_file else ENCRYPTION_KEY_FILE)
        self.env_key = env_key or None
        self.max_age_days = max_age_days
        self._key: Optional[bytes] = None
        self._created_at: Optional[int] = None
        self._source: Optional[str] = None

    @property
    def source(self) -> str:
        """Where the active key came from ("environment" or "file")"""
        self.get_key()
        return self._source

    def get_key(self) -> bytes:
        """Return the active Fernet key, loading or generating it on first use"""
        if self._key is not None:
            return self._key

        if self.env_key:
            self._key = self.env_key.encode("utf-8")
            # Validate early so a bad env value fails loudly
            Fernet(self._key)
            self._source = "environment"
            logger.info("Using encryption key from ENCRYPTION_KEY environment variable")
            return self._key

        record = read_json_record(self.key_file)
        if record and record.get("key") and not self._is_stale(record.get("createdAt", 0)):
            self._key = record["key"].encode("utf-8")
            self._created_at = record.get("createdAt")
            self._source = "file"
            logger.debug(f"Loaded encryption key from {self.key_file}")
            return self._key

        if record:
            logger.info("Stored encryption key expired, generating a new one")
        return self._generate()

    def cipher(self) -> Fernet:
        """Get a Fernet cipher bound to the active key"""
        return Fernet(self.get_key())

    def regenerate(self) -> bytes:
        """Replace the file-backed key with a new one

        Raises:
            RuntimeError: If the key is supplied by the environment
        """
        if self.env_key:
            raise RuntimeError("Cannot regenerate encryption key while ENCRYPTION_KEY is set")
        return self._generate()

    def info(self) -> Dict[str, Any]:
        """Describe the active key without exposing it"""
        self.get_key()
        info: Dict[str, Any] = {"source": self._source, "key_file": str(self.key_file)}
        if self._created_at:
            info["created_at"] = self._created_at
            info["expires_at"] = self._created_at + self.max_age_days * DAY_MS
        return info

    def _is_stale(self, created_at: int) -> bool:
        age_ms = int(time.time() * 1000) - int(created_at or 0)
        return age_ms > self.max_age_days * DAY_MS

    def _generate(self) -> bytes:
        key = Fernet.generate_key()
        created_at = int(time.time() * 1000)
        write_json_record(self.key_file, {
            "key": key.decode("utf-8"),
            "createdAt": created_at,
            "version": KEY_FILE_VERSION,
            "source": "generated",
        })
        self._key = key
        self._created_at = created_at
        self._source = "file"
        logger.info(f"Generated new encryption key at {self.key_file}")
        return key
