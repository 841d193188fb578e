"""
API key authentication for the edge API.

Two keys from the environment: API_KEY_ADMIN (pipeline triggers, manual
grading) and API_KEY_USER (read-only routes).  Keys are read per request.
"""

import os
from typing import Dict

from dotenv import load_dotenv
from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

load_dotenv()

API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)

ADMIN_USER = "admin"


def get_valid_api_keys() -> Dict[str, str]:
    """Map of configured key -> user id."""
    keys = {}
    user_key = os.getenv("API_KEY_USER")
    if user_key:
        keys[user_key] = "user"
    admin_key = os.getenv("API_KEY_ADMIN")
    if admin_key:
        keys[admin_key] = ADMIN_USER

    if not keys and os.getenv("ENVIRONMENT") == "development":
        # Development fallback (never use in production)
        keys["dev-key-insecure"] = ADMIN_USER
    return keys


async def verify_api_key(api_key: str = Security(API_KEY_HEADER)) -> str:
    """
    Verify the X-API-Key header and return the user identifier.

    Usage:
        @app.get("/api/edges")
        async def edges(user: str = Depends(verify_api_key)):
            ...
    """
    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key required. Include 'X-API-Key' header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    valid = get_valid_api_keys()
    if api_key not in valid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )
    return valid[api_key]


async def verify_admin_api_key(user: str = Security(verify_api_key)) -> str:
    if user != ADMIN_USER:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user
