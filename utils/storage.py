import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken

from exceptions import PersistenceFailed
from utils.secure_files import ensure_secure_directory, write_secure

logger = logging.getLogger(__name__)


class EncryptedConfigStore:
    """Fernet-encrypted JSON document on disk

    Loading never fails: a missing file, a file encrypted under a rotated
    key, or corrupt JSON all yield ``default_factory()``. Saving is atomic
    and raises PersistenceFailed when the disk write fails.
    """

    def __init__(
        self,
        path: str,
        cipher: Fernet,
        default_factory: Optional[Callable[[], Dict[str, Any]]] = None,
    ):
        self.path = Path(path)
        self.cipher = cipher
        self.default_factory = default_factory or dict
        # Guards read-modify-write cycles across threads
        self.lock = threading.RLock()
        ensure_secure_directory(self.path.parent)

    def load(self) -> Dict[str, Any]:
        """Decrypt and parse the stored document"""
        if not self.path.exists():
            return self.default_factory()

        try:
            ciphertext = self.path.read_bytes()
            plaintext = self.cipher.decrypt(ciphertext)
            data = json.loads(plaintext.decode("utf-8"))
        except InvalidToken:
            logger.warning(f"Could not decrypt {self.path} (encryption key changed?), starting empty")
            return self.default_factory()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Corrupt data in {self.path}: {e}, starting empty")
            return self.default_factory()
        except OSError as e:
            logger.warning(f"Failed to read {self.path}: {e}, starting empty")
            return self.default_factory()

        if not isinstance(data, dict):
            logger.warning(f"Unexpected document type in {self.path}, starting empty")
            return self.default_factory()
        return data

    def save(self, data: Dict[str, Any]):
        """Encrypt and atomically write the document

        Raises:
            PersistenceFailed: If the file cannot be written
        """
        plaintext = json.dumps(data, indent=2).encode("utf-8")
        ciphertext = self.cipher.encrypt(plaintext)
        try:
            write_secure(self.path, ciphertext)
        except OSError as e:
            logger.error(f"Failed to write {self.path}: {e}")
            raise PersistenceFailed(self.path, e) from e

    def update(self, mutate: Callable[[Dict[str, Any]], Any]) -> Any:
        """Load, apply ``mutate`` in place, save, and return its result"""
        with self.lock:
            data = self.load()
            result = mutate(data)
            self.save(data)
            return result

    def clear(self):
        """Remove the stored document"""
        with self.lock:
            if self.path.exists():
                self.path.unlink()
