import secrets
from typing import Optional
from fastapi import Depends, HTTPException, Security, status
from fastapi.security import APIKeyHeader
from vendor_orders.core import config

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def _matches(candidate: str, expected: str) -> bool:
    return secrets.compare_digest(candidate.encode(), expected.encode())


def require_api_key(api_key: Optional[str] = Security(api_key_header)) -> str:
    """Accepts either the vendor or the admin key. Returns the caller's role."""
    if api_key and _matches(api_key, config.ADMIN_API_KEY):
        return "admin"
    if api_key and _matches(api_key, config.API_KEY):
        return "vendor"
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Missing or invalid API key.",
        headers={"WWW-Authenticate": "APIKey"},
    )


def require_admin(role: str = Depends(require_api_key)) -> str:
    if role != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin privileges required.")
    return role
