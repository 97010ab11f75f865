"""Owner-only file helpers shared by every on-disk store"""

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Union


def ensure_secure_directory(directory: Path):
    """Create a directory with 700 permissions on Unix-like systems"""
    if not directory.exists():
        directory.mkdir(parents=True, exist_ok=True)
        if platform.system() != "Windows":
            os.chmod(directory, 0o700)


def write_secure(path: Path, content: Union[str, bytes]):
    """Atomically replace ``path`` with ``content``, readable by the owner only

    The content is written to a temporary file in the same directory,
    fsynced, then renamed into place, so readers never observe a partial
    file.

    Raises:
        OSError: If the file cannot be written
    """
    ensure_secure_directory(path.parent)
    data = content.encode("utf-8") if isinstance(content, str) else content

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        if platform.system() != "Windows":
            os.chmod(tmp_path, 0o600)
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def read_json_record(path: Path) -> Optional[Dict[str, Any]]:
    """Load a small JSON object from disk, or None if missing or unreadable"""
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None


def write_json_record(path: Path, data: Dict[str, Any]):
    """Persist a small JSON object with owner-only permissions"""
    write_secure(path, json.dumps(data, indent=2))
