"""
Access token inspection helpers.

Informational only: claims are read without verification and never drive a
refresh. Refresh is triggered exclusively by an observed unauthorized response.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from jose import jwt, JWTError

logger = logging.getLogger(__name__)


def parse_token_expiration(token: Optional[str]) -> Optional[datetime]:
    """
    Read the expiration time from a JWT access token.

    Args:
        token: Access token, JWT or opaque

    Returns:
        Timezone-aware expiration datetime, or None for opaque tokens and
        tokens without an ``exp`` claim
    """
    if not token:
        return None

    try:
        payload = jwt.get_unverified_claims(token)
    except JWTError:
        # Opaque tokens are fine, they just carry no expiry
        return None

    expires_at = payload.get('exp')
    if expires_at is None:
        return None

    try:
        return datetime.fromtimestamp(float(expires_at), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        logger.warning("Access token carries an invalid exp claim")
        return None
