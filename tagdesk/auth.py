"""
Caller identity.

Authentication happens upstream; the gateway forwards the authenticated
user as ``X-User-Id`` / ``X-User-Name`` / ``X-User-Email`` headers.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Header, HTTPException

from tagdesk.db import UserRecord


def get_current_user(
    user_id: Optional[str] = Header(None, alias="X-User-Id"),
    user_name: Optional[str] = Header(None, alias="X-User-Name"),
    user_email: Optional[str] = Header(None, alias="X-User-Email"),
) -> UserRecord:
    """Return the caller attached to the request, or fail with 401."""
    if not user_id:
        raise HTTPException(
            status_code=401,
            detail="Missing caller identity",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return UserRecord(id=user_id, name=user_name or "", email=user_email or "")
