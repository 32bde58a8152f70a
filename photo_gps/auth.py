"""
Owner Identity

The upstream gateway authenticates the session and forwards the user id.
This service only reads it.
"""

from typing import Optional

from fastapi import Header, HTTPException, status


async def get_current_owner(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Owner identity for the request, taken from the X-User-Id header."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return x_user_id.strip()
