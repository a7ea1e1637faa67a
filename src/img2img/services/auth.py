"""API key identity gate.

Maps a bearer API key to the identity that owns tasks created with it.
Keys are compared in constant time.
"""

import hmac
from dataclasses import dataclass
from typing import Optional

from img2img.services.exceptions import AuthenticationError


@dataclass(frozen=True)
class Identity:
    """Authenticated caller."""

    user_id: str


def parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract token from an "Authorization: Bearer <token>" header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def authenticate(api_key: Optional[str], api_keys: dict[str, str]) -> Identity:
    """Resolve an API key to its identity.

    Args:
        api_key: Key presented by the caller
        api_keys: Mapping of valid key -> user id

    Returns:
        Identity owning the key

    Raises:
        AuthenticationError: If the key is missing or unknown
    """
    if not api_key:
        raise AuthenticationError("Missing API key")

    # Check every key so timing doesn't reveal which prefix matched
    matched: Optional[str] = None
    for key, user_id in api_keys.items():
        if hmac.compare_digest(key.encode("utf-8"), api_key.encode("utf-8")):
            matched = user_id

    if matched is None:
        raise AuthenticationError("Invalid API key")

    return Identity(user_id=matched)
