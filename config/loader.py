"""Configuration loader for the keyboard agent

Values are resolved in this order:
1. Process environment
2. A ``.env`` file (working directory, then the storage directory)
3. Defaults passed by ``settings``

Every value is coerced to the type of its default, so a malformed
override falls back to the default with a warning instead of failing
deep inside the agent.
"""

import logging
import os
from pathlib import Path
from typing import Any, Iterable, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ENV_FILE_NAME = ".env"
DEFAULT_STORAGE_DIR = "~/.keyboard-mcp"
TRUE_VALUES = ("true", "1", "yes", "on")


class ConfigLoader:
    """Reads typed settings from the environment and ``.env`` files"""

    def __init__(self, env_path: Optional[str] = None):
        """
        Args:
            env_path: Explicit ``.env`` file. When omitted, ``./.env`` and
                ``<STORAGE_DIR>/.env`` are loaded if present.
        """
        self.env_paths = [Path(env_path)] if env_path else self._default_env_paths()
        for path in self.env_paths:
            self._load_env_file(path)

    @staticmethod
    def _default_env_paths():
        storage_dir = Path(os.getenv("STORAGE_DIR", DEFAULT_STORAGE_DIR)).expanduser()
        return [Path(ENV_FILE_NAME), storage_dir / ENV_FILE_NAME]

    def _load_env_file(self, path: Path):
        # Existing environment variables are never overridden
        if path.exists():
            load_dotenv(dotenv_path=path, override=False)
            logger.debug(f"Loaded environment variables from {path}")

    def get(self, env_var: str, default: Any) -> Any:
        """Get a value coerced to the type of ``default``

        Args:
            env_var: Environment variable name
            default: Value used when the variable is unset or unparsable

        Returns:
            The configured value
        """
        raw = os.getenv(env_var)
        if raw is None or raw == "":
            return default

        if isinstance(default, bool):
            return raw.strip().lower() in TRUE_VALUES
        for kind in (int, float):
            if isinstance(default, kind):
                try:
                    return kind(raw)
                except ValueError:
                    logger.warning(f"Invalid {kind.__name__} for {env_var}={raw!r}, using default {default}")
                    return default
        return raw

    def get_path(self, env_var: str, default: str) -> str:
        """Get a filesystem path with ``~`` expanded"""
        return str(Path(self.get(env_var, default)).expanduser())

    def get_choice(self, env_var: str, default: str, choices: Iterable[str]) -> str:
        """Get a lower-cased value restricted to ``choices``"""
        value = str(self.get(env_var, default)).strip().lower()
        allowed = tuple(choices)
        if value not in allowed:
            logger.warning(f"{env_var} must be one of {', '.join(allowed)}; using {default}")
            return default
        return value


_config_loader: Optional[ConfigLoader] = None


def get_config_loader() -> ConfigLoader:
    """Get or create the global ConfigLoader instance"""
    global _config_loader
    if _config_loader is None:
        _config_loader = ConfigLoader()
    return _config_loader
