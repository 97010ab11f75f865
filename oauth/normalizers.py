"""Provider-specific user profile normalization

Each normalizer maps a provider's userinfo payload onto a common shape:
``id, email, name, firstName, lastName, picture`` plus a few provider
specific extras. Providers without a normalizer pass through unchanged.
"""

from typing import Any, Callable, Dict

UserProfile = Dict[str, Any]


def normalize_google(data: UserProfile) -> UserProfile:
    return {
        "id": data.get("id"),
        "email": data.get("email"),
        "name": data.get("name"),
        "firstName": data.get("given_name"),
        "lastName": data.get("family_name"),
        "picture": data.get("picture"),
        "verified_email": data.get("verified_email"),
        "locale": data.get("locale"),
    }


def normalize_github(data: UserProfile) -> UserProfile:
    raw_id = data.get("id")
    full_name = data.get("name")
    parts = full_name.split(" ") if full_name else []
    return {
        "id": str(raw_id) if raw_id is not None else None,
        "email": data.get("email"),
        "name": full_name or data.get("login"),
        "firstName": parts[0] if parts else None,
        "lastName": " ".join(parts[1:]) if parts else None,
        "picture": data.get("avatar_url"),
        "login": data.get("login"),
        "company": data.get("company"),
        "location": data.get("location"),
    }


def normalize_microsoft(data: UserProfile) -> UserProfile:
    return {
        "id": data.get("id"),
        "email": data.get("mail") or data.get("userPrincipalName"),
        "name": data.get("displayName"),
        "firstName": data.get("givenName"),
        "lastName": data.get("surname"),
        "picture": data.get("photo"),
        "jobTitle": data.get("jobTitle"),
        "department": data.get("department"),
    }


NORMALIZERS: Dict[str, Callable[[UserProfile], UserProfile]] = {
    "google": normalize_google,
    "github": normalize_github,
    "microsoft": normalize_microsoft,
}


def normalize_user(provider_id: str, data: UserProfile) -> UserProfile:
    """Normalize a userinfo payload for ``provider_id``"""
    normalizer = NORMALIZERS.get(provider_id)
    if normalizer is None:
        return data
    return normalizer(data)
