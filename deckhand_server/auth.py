"""
Authentication utilities for the Deckhand server.

This module provides API token generation and hashing, as well as the
FastAPI dependency that guards every control endpoint. Only the SHA-256
hash of the token needs to be configured on the server.
"""

import hashlib
import secrets

from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

# HTTP Bearer token authentication scheme
security = HTTPBearer()


def generate_api_token() -> str:
    """
    Generate a new API token with format: dh_<40 random chars>.

    The token uses URL-safe base64 encoding with 240 bits of entropy.

    Example:
        >>> token = generate_api_token()
        >>> token.startswith("dh_")
        True
        >>> len(token)
        43
    """
    random_part = secrets.token_urlsafe(30)[:40]
    return f"dh_{random_part}"


def hash_api_token(token: str) -> str:
    """
    Hash an API token using SHA-256.

    Returns:
        Hex-encoded SHA-256 hash (64 characters)
    """
    return hashlib.sha256(token.encode()).hexdigest()


def create_verify_token_dependency(get_token_hash_func):  # type: ignore
    """
    Create the token-checking dependency with hash injection.

    Args:
        get_token_hash_func: Dependency returning the configured token hash

    Returns:
        Async function usable with Depends()

    Example:
        # In app.py:
        verify_token = create_verify_token_dependency(get_token_hash)

        @app.post("/api/git/fetch", dependencies=[Depends(verify_token)])
        async def git_fetch(): ...
    """

    async def verify_token(
        credentials: HTTPAuthorizationCredentials = Security(security),
        token_hash: str = Depends(get_token_hash_func),
    ) -> None:
        presented = hash_api_token(credentials.credentials)
        if not secrets.compare_digest(presented, token_hash):
            raise HTTPException(
                status_code=401,
                detail="Invalid API token",
                headers={"WWW-Authenticate": "Bearer"},
            )

    return verify_token
