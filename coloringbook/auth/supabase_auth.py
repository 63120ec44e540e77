"""Supabase JWT validation dependencies for FastAPI."""

from typing import Any, Optional

from fastapi import Depends, Header, HTTPException
from starlette.concurrency import run_in_threadpool
from supabase import create_client

from coloringbook.api.deps import Services, get_services


async def verify_jwt(
    authorization: str = Header(None),
    services: Services = Depends(get_services),
) -> Any:
    """Validate Supabase JWT from Authorization header.

    Returns the authenticated user object.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid token")

    token = authorization.replace("Bearer ", "")
    settings = services.settings
    try:
        client = create_client(settings.supabase_url, settings.supabase_anon_key)
        user_response = await run_in_threadpool(client.auth.get_user, token)
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid token")

    if user_response is None or user_response.user is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    return user_response.user


async def current_user_id(user: Any = Depends(verify_jwt)) -> str:
    return user.id


async def optional_user_id(
    authorization: str = Header(None),
    services: Services = Depends(get_services),
) -> Optional[str]:
    """User id when a bearer token is sent, None for anonymous callers."""
    if not authorization:
        return None
    user = await verify_jwt(authorization, services)
    return user.id
