from typing import Any

import httpx
from fastapi import Depends, Header, HTTPException, status

from marketplace.core.auth import AuthSession, parse_account_type
from marketplace.core.config import Settings, get_settings

_DISPLAY_NAME_KEYS = ("name", "full_name", "display_name")


async def get_auth_session(
    settings: Settings = Depends(get_settings),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> AuthSession:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="authentication requires bearer token",
        )

    token = authorization.split(" ", maxsplit=1)[1].strip()
    return await resolve_auth_session(token, settings)


async def resolve_auth_session(token: str, settings: Settings) -> AuthSession:
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="empty bearer token")

    if not settings.supabase_url or not settings.supabase_anon_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth is not configured",
        )

    user = await _fetch_supabase_user(
        supabase_url=settings.supabase_url,
        supabase_anon_key=settings.supabase_anon_key,
        token=token,
        timeout_seconds=settings.auth_timeout_seconds,
    )
    user_id = user.get("id")
    if not isinstance(user_id, str) or not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token")

    return AuthSession.for_account(
        user_id,
        _resolve_account_type(user),
        display_name=_resolve_display_name(user),
    )


async def _fetch_supabase_user(
    *,
    supabase_url: str,
    supabase_anon_key: str,
    token: str,
    timeout_seconds: float,
) -> dict[str, Any]:
    headers = {
        "Authorization": f"Bearer {token}",
        "apikey": supabase_anon_key,
    }
    url = f"{supabase_url.rstrip('/')}/auth/v1/user"

    try:
        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            response = await client.get(url, headers=headers)
    except httpx.HTTPError as exc:  # pragma: no cover - network dependent
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth verification unavailable",
        ) from exc

    if response.status_code in {401, 403}:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token")
    if response.status_code != 200:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth verification failed",
        )

    return response.json()


def _resolve_account_type(user: dict[str, Any]):
    for metadata_key in ("app_metadata", "user_metadata"):
        metadata = user.get(metadata_key)
        if isinstance(metadata, dict):
            account_type = metadata.get("account_type")
            if isinstance(account_type, str) and account_type:
                return parse_account_type(account_type)
    return parse_account_type(None)


def _resolve_display_name(user: dict[str, Any]) -> str:
    user_metadata = user.get("user_metadata")
    if isinstance(user_metadata, dict):
        for key in _DISPLAY_NAME_KEYS:
            value = user_metadata.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return ""
