"""Admin authentication and rate limiting for the reconciliation API."""

import os
import secrets
import logging

from fastapi import HTTPException, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from slowapi import Limiter
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)

admin_bearer = HTTPBearer()

# Shared by every rate-limited admin route; keyed by client address
limiter = Limiter(key_func=get_remote_address)


async def verify_api_key(credentials: HTTPAuthorizationCredentials = Security(admin_bearer)) -> str:
    """Check the admin bearer token against API_KEY.

    Args:
        credentials: Bearer credentials from the Authorization header.

    Returns:
        The accepted token.

    Raises:
        HTTPException: 500 if API_KEY is unset, 401 if the token does not match.
    """
    expected_key = os.getenv("API_KEY")
    if not expected_key:
        logger.error("API_KEY environment variable is not configured")
        raise HTTPException(status_code=500, detail="Server configuration error")

    token = credentials.credentials
    if not secrets.compare_digest(token.encode(), expected_key.encode()):
        logger.warning("Rejected admin request with invalid API key")
        raise HTTPException(status_code=401, detail="Invalid API key")
    return token
