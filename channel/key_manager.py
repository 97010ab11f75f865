"""Connection key for the local approval channel

Clients authenticate by passing the key as ``?key=<hex>`` when they open
the WebSocket. The key lives in an owner-only JSON file and is rotated
automatically once it is older than the validity window.
"""

import hmac
import logging
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from settings import WS_HOST, WS_KEY_FILE, WS_KEY_MAX_AGE_DAYS, WS_PORT
from utils.events import EventHooks
from utils.secure_files import read_json_record, write_json_record

logger = logging.getLogger(__name__)

KEY_FILE_VERSION = "1.0"
DAY_MS = 24 * 60 * 60 * 1000


@dataclass
class KeyRecord:
    """Persisted connection key

    Attributes:
        key: 64 hex characters (32 random bytes)
        created_at: Creation time in epoch ms
        version: Key file format version
    """
    key: str
    created_at: int
    version: str = KEY_FILE_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "createdAt": self.created_at, "version": self.version}


class ConnectionKeyManager:
    """Loads, validates and rotates the channel connection key

    Observers registered with :meth:`on_key_rotated` receive the new
    KeyRecord whenever a key is generated.
    """

    def __init__(
        self,
        key_file: Optional[str] = None,
        max_age_days: int = WS_KEY_MAX_AGE_DAYS,
        hooks: Optional[EventHooks] = None,
    ):
        self.key_file = Path(key_file if key_file else WS_KEY_FILE)
        self.max_age_days = max_age_days
        self.hooks = hooks or EventHooks()
        self.record: Optional[KeyRecord] = None

    def on_key_rotated(self, callback):
        """Register a callback for key rotation; returns an unsubscribe function"""
        return self.hooks.on("key_rotated", callback)

    def is_expired(self, record: KeyRecord, now_ms: Optional[int] = None) -> bool:
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        return now_ms - record.created_at > self.max_age_days * DAY_MS

    def load_or_generate(self) -> KeyRecord:
        """Reuse the stored key while it is valid, otherwise generate a new one"""
        data = read_json_record(self.key_file)
        if data and isinstance(data.get("key"), str) and data.get("createdAt"):
            record = KeyRecord(
                key=data["key"],
                created_at=int(data["createdAt"]),
                version=data.get("version", KEY_FILE_VERSION),
            )
            if not self.is_expired(record):
                self.record = record
                logger.debug(f"Loaded connection key from {self.key_file}")
                return record
            logger.info("Connection key expired, generating a new one")

        return self._generate()

    def regenerate(self) -> KeyRecord:
        """Replace the key immediately; the previous key stops validating at once"""
        logger.info("Regenerating connection key")
        return self._generate()

    def _generate(self) -> KeyRecord:
        record = KeyRecord(key=secrets.token_hex(32), created_at=int(time.time() * 1000))
        write_json_record(self.key_file, record.to_dict())
        self.record = record
        logger.info(f"Generated new connection key at {self.key_file}")
        self.hooks.emit("key_rotated", record)
        return record

    def current(self) -> KeyRecord:
        """The active key, loading it on first use"""
        if self.record is None:
            return self.load_or_generate()
        return self.record

    def validate(self, candidate: Optional[str]) -> bool:
        """Constant-time comparison of a client-supplied key"""
        if not candidate:
            return False
        record = self.current()
        if self.is_expired(record):
            record = self.load_or_generate()
        return hmac.compare_digest(record.key.encode("utf-8"), candidate.encode("utf-8"))

    def connection_url(self, port: int = WS_PORT, host: str = WS_HOST) -> str:
        """WebSocket URL a local client should connect to"""
        return f"ws://{host}:{port}?key={self.current().key}"

    def info(self) -> Dict[str, Any]:
        record = self.current()
        return {
            "key": record.key,
            "created_at": record.created_at,
            "expires_at": record.created_at + self.max_age_days * DAY_MS,
            "key_file": str(self.key_file),
        }
