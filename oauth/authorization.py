"""OAuth authorization URL construction"""

from urllib.parse import urlencode

from providers.models import ProviderConfig
from .models import PKCEParams


def build_authorization_url(provider: ProviderConfig, pkce: PKCEParams) -> str:
    """Construct the provider's consent URL

    The PKCE challenge is only included for providers that use PKCE;
    ``additional_params`` are appended last.

    Args:
        provider: Provider configuration
        pkce: Parameters of the current attempt

    Returns:
        Full authorization URL
    """
    params = {
        "client_id": provider.client_id,
        "redirect_uri": provider.redirect_uri,
        "scope": " ".join(provider.scopes),
        "response_type": "code",
        "state": pkce.state,
    }

    if provider.use_pkce:
        params["code_challenge"] = pkce.code_challenge
        params["code_challenge_method"] = "S256"

    if provider.additional_params:
        params.update(provider.additional_params)

    separator = "&" if "?" in provider.authorization_url else "?"
    return f"{provider.authorization_url}{separator}{urlencode(params)}"
