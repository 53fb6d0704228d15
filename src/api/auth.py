"""Request principal.

Sessions are validated upstream (reverse proxy / auth gateway), which
forwards the authenticated user id in the X-User-Id header.
"""

from typing import Optional

from fastapi import Header, HTTPException


def get_current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Authenticated user id, or 401."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id.strip()
