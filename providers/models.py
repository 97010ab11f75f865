"""
Pydantic models for OAuth provider definitions.
"""
import time
from typing import Dict, List, Optional

from pydantic import BaseModel, field_validator


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds"""
    return int(time.time() * 1000)


class ProviderConfig(BaseModel):
    """OAuth2 provider definition

    Built-in providers (google, github, microsoft) are seeded on first run;
    anything added through the management surface is marked ``is_custom``.
    """
    id: str
    name: str
    client_id: str = ""
    client_secret: Optional[str] = None
    authorization_url: str
    token_url: str
    user_info_url: Optional[str] = None
    scopes: List[str] = []
    use_pkce: bool = True
    redirect_uri: str
    additional_params: Optional[Dict[str, str]] = None
    is_custom: bool = False
    created_at: int = 0
    updated_at: int = 0

    @field_validator("scopes")
    @classmethod
    def dedupe_scopes(cls, scopes: List[str]) -> List[str]:
        # Keep first occurrence order
        return list(dict.fromkeys(s for s in scopes if s))

    @property
    def is_available(self) -> bool:
        """A provider can be used only once it has a client id"""
        return bool(self.client_id and self.client_id.strip())


class ServerProvider(BaseModel):
    """Remote relay that can authorize, exchange and refresh on our behalf"""
    id: str
    name: str
    url: str

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, url: str) -> str:
        return url.rstrip("/")
