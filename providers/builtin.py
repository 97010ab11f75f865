"""Default definitions for the built-in OAuth providers"""

from typing import Dict

import settings
from .models import ProviderConfig

BUILTIN_PROVIDER_IDS = ("google", "github", "microsoft")


def builtin_providers(redirect_uri: str = None) -> Dict[str, ProviderConfig]:
    """Build the built-in provider definitions from current settings

    Args:
        redirect_uri: Override for the local callback URI

    Returns:
        Dict of provider id to ProviderConfig (timestamps left at 0)
    """
    redirect = redirect_uri or settings.OAUTH_REDIRECT_URI
    return {
        "google": ProviderConfig(
            id="google",
            name="Google",
            client_id=settings.GOOGLE_CLIENT_ID,
            client_secret=settings.GOOGLE_CLIENT_SECRET or None,
            authorization_url="https://accounts.google.com/o/oauth2/auth",
            token_url="https://oauth2.googleapis.com/token",
            user_info_url="https://www.googleapis.com/oauth2/v1/userinfo",
            scopes=[
                "openid",
                "email",
                "profile",
                "https://www.googleapis.com/auth/drive.readonly",
                "https://www.googleapis.com/auth/gmail.readonly",
                "https://www.googleapis.com/auth/spreadsheets",
                "https://www.googleapis.com/auth/presentations",
                "https://www.googleapis.com/auth/drive.file",
            ],
            use_pkce=True,
            redirect_uri=redirect,
            # Needed for Google to issue a refresh token
            additional_params={"access_type": "offline", "prompt": "consent"},
        ),
        "github": ProviderConfig(
            id="github",
            name="GitHub",
            client_id=settings.GITHUB_CLIENT_ID,
            client_secret=settings.GITHUB_CLIENT_SECRET or None,
            authorization_url="https://github.com/login/oauth/authorize",
            token_url="https://github.com/login/oauth/access_token",
            user_info_url="https://api.github.com/user",
            scopes=["user:email", "repo"],
            # GitHub OAuth apps do not support PKCE
            use_pkce=False,
            redirect_uri=redirect,
        ),
        "microsoft": ProviderConfig(
            id="microsoft",
            name="Microsoft",
            client_id=settings.MICROSOFT_CLIENT_ID,
            client_secret=settings.MICROSOFT_CLIENT_SECRET or None,
            authorization_url="https://login.microsoftonline.com/common/oauth2/v2.0/authorize",
            token_url="https://login.microsoftonline.com/common/oauth2/v2.0/token",
            user_info_url="https://graph.microsoft.com/v1.0/me",
            scopes=["openid", "profile", "email", "User.Read"],
            use_pkce=True,
            redirect_uri=redirect,
        ),
    }
