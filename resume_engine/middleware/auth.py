"""
Caller identity.

Authentication happens upstream; requests arrive with the already verified
user id in the X-User-ID header.
"""
from typing import Optional

from fastapi import Header, HTTPException, status


async def get_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-ID")) -> str:
    """FastAPI dependency returning the caller's user id"""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-ID header")
    return x_user_id.strip()
