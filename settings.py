import os
from pathlib import Path
from config.loader import DEFAULT_STORAGE_DIR, get_config_loader

# Get the config loader instance
config = get_config_loader()

# Storage locations
STORAGE_DIR = config.get_path("STORAGE_DIR", DEFAULT_STORAGE_DIR)
PROVIDERS_FILE = config.get_path("PROVIDERS_FILE", str(Path(STORAGE_DIR) / "providers.encrypted"))
TOKENS_FILE = config.get_path("TOKENS_FILE", str(Path(STORAGE_DIR) / "oauth-tokens.encrypted"))
WS_KEY_FILE = config.get_path("WS_KEY_FILE", str(Path(STORAGE_DIR) / "ws-key.json"))
ENCRYPTION_KEY_FILE = config.get_path("ENCRYPTION_KEY_FILE", str(Path(STORAGE_DIR) / "encryption-key.json"))

# Logging (uvicorn level names)
LOG_LEVEL = config.get_choice("LOG_LEVEL", "info", ("critical", "error", "warning", "info", "debug", "trace"))

# Approval channel (loopback only)
WS_HOST = "127.0.0.1"
WS_PORT = config.get("WS_PORT", 8080)
WS_KEY_MAX_AGE_DAYS = config.get("WS_KEY_MAX_AGE_DAYS", 30)
APPROVAL_ALLOW_REDECIDE = config.get("APPROVAL_ALLOW_REDECIDE", True)
# Security evaluations at or below this risk level are approved automatically
AUTO_APPROVE_RISK_LEVEL = config.get_choice("AUTO_APPROVE_RISK_LEVEL", "never", ("never", "low", "medium", "high"))

# Provider whose token answers a plain "request-token" message
PRIMARY_PROVIDER = config.get("PRIMARY_PROVIDER", "github")

# At-rest encryption
# A Fernet key supplied by the environment always wins over the key file
ENCRYPTION_KEY = os.getenv("ENCRYPTION_KEY", None)
ENCRYPTION_KEY_MAX_AGE_DAYS = config.get("ENCRYPTION_KEY_MAX_AGE_DAYS", 365)

# OAuth redirect handling
OAUTH_CALLBACK_HOST = "localhost"
OAUTH_CALLBACK_PORT = config.get("OAUTH_CALLBACK_PORT", 8082)
OAUTH_CALLBACK_PATH = "/callback"
OAUTH_REDIRECT_URI = config.get(
    "OAUTH_REDIRECT_URI",
    f"http://{OAUTH_CALLBACK_HOST}:{OAUTH_CALLBACK_PORT}{OAUTH_CALLBACK_PATH}",
)
OAUTH_CALLBACK_TIMEOUT = config.get("OAUTH_CALLBACK_TIMEOUT", 300)

# Timeouts
REQUEST_TIMEOUT = config.get("REQUEST_TIMEOUT", 30.0)

# Access tokens are treated as expired this long before their real expiry
REFRESH_BUFFER_SECONDS = config.get("REFRESH_BUFFER_SECONDS", 300)

# Built-in provider credentials (empty means "not configured")
GOOGLE_CLIENT_ID = config.get("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = config.get("GOOGLE_CLIENT_SECRET", "")
GITHUB_CLIENT_ID = config.get("GITHUB_CLIENT_ID", "")
GITHUB_CLIENT_SECRET = config.get("GITHUB_CLIENT_SECRET", "")
MICROSOFT_CLIENT_ID = config.get("MICROSOFT_CLIENT_ID", "")
MICROSOFT_CLIENT_SECRET = config.get("MICROSOFT_CLIENT_SECRET", "")
