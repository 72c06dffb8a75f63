"""Strava OAuth and REST API client."""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx
import structlog
from sqlmodel import Session

from ..core import STRAVA_CLIENT_ID, STRAVA_CLIENT_SECRET, STRAVA_REDIRECT_URI, utcnow
from ..core.security import decrypt, encrypt
from ..errors import NotFoundError, StravaAPIError
from ..models import User

logger = structlog.get_logger(__name__)

AUTH_BASE = "https://www.strava.com/oauth/authorize"
TOKEN_URL = "https://www.strava.com/oauth/token"
API_BASE = "https://www.strava.com/api/v3"
SCOPES = "read,activity:read_all"

# Refresh stored tokens that expire within this window.
REFRESH_MARGIN_SEC = 3600

RUNNING_TYPES = {"Run"}
RUNNING_SPORT_TYPES = {"TrailRun", "VirtualRun"}


def auth_url(state: str = "state1") -> str:
    """Generate Strava OAuth authorization URL."""

    params = {
        "client_id": STRAVA_CLIENT_ID,
        "redirect_uri": STRAVA_REDIRECT_URI,
        "response_type": "code",
        "approval_prompt": "auto",
        "scope": SCOPES,
        "state": state,
    }
    return f"{AUTH_BASE}?{urlencode(params)}"


async def _post_token(data: Dict[str, Any]) -> Dict[str, Any]:
    async with httpx.AsyncClient(timeout=20) as client:
        response = await client.post(
            TOKEN_URL,
            data={
                "client_id": STRAVA_CLIENT_ID,
                "client_secret": STRAVA_CLIENT_SECRET,
                **data,
            },
        )
    if response.status_code >= 400:
        logger.warning(
            "strava_token_request_failed",
            grant_type=data.get("grant_type"),
            status=response.status_code,
        )
        raise StravaAPIError(
            f"Strava token request failed: {response.status_code}",
            upstream_status=response.status_code,
        )
    return response.json()


async def exchange_code_for_token(code: str) -> Dict[str, Any]:
    return await _post_token({"code": code, "grant_type": "authorization_code"})


async def refresh_access_token(refresh_token: str) -> Dict[str, Any]:
    return await _post_token({"refresh_token": refresh_token, "grant_type": "refresh_token"})


async def api_get(
    access_token: str, path: str, params: Optional[Dict[str, Any]] = None
) -> httpx.Response:
    url = f"{API_BASE}{path}"
    async with httpx.AsyncClient(timeout=30) as client:
        return await client.get(
            url,
            headers={"Authorization": f"Bearer {access_token}"},
            params=params or {},
        )


async def fetch_activity(activity_id: int, access_token: str) -> Dict[str, Any]:
    """Load one activity (with its summary polyline) from Strava."""

    response = await api_get(access_token, f"/activities/{activity_id}")
    if response.status_code == 404:
        raise NotFoundError("Activity not found on Strava")
    if response.status_code >= 400:
        logger.error(
            "strava_activity_fetch_failed",
            activity_id=activity_id,
            status=response.status_code,
            body=response.text[:500],
        )
        raise StravaAPIError(
            f"Strava API error: {response.status_code}",
            upstream_status=response.status_code,
        )
    return response.json()


async def list_activities(
    access_token: str, page: int = 1, per_page: int = 30
) -> List[Dict[str, Any]]:
    """One page of the athlete's activities, newest first."""

    response = await api_get(
        access_token,
        "/athlete/activities",
        params={"page": page, "per_page": per_page},
    )
    if response.status_code >= 400:
        logger.error(
            "strava_activity_list_failed",
            page=page,
            status=response.status_code,
            body=response.text[:500],
        )
        raise StravaAPIError(
            f"Strava API error: {response.status_code}",
            upstream_status=response.status_code,
        )
    return response.json()


def activity_summary(activity: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": activity["id"],
        "name": activity.get("name") or f"Activity {activity['id']}",
        "type": activity.get("type"),
        "sport_type": activity.get("sport_type"),
        "start_date": activity.get("start_date"),
        "distance": activity.get("distance"),
        "moving_time": activity.get("moving_time"),
        "has_route": bool((activity.get("map") or {}).get("summary_polyline")),
        "is_running": is_running_activity(activity),
    }


def is_running_activity(activity: Dict[str, Any]) -> bool:
    return (
        activity.get("type") in RUNNING_TYPES
        or activity.get("sport_type") in RUNNING_SPORT_TYPES
    )


def store_tokens(user: User, token_data: Dict[str, Any]) -> None:
    """Copy a token response onto the user, encrypting the secrets."""

    user.access_token = encrypt(token_data["access_token"])
    user.refresh_token = encrypt(token_data["refresh_token"])
    user.token_expires_at = int(token_data["expires_at"])
    user.updated_at = utcnow()


async def refresh_user_token(session: Session, user: User) -> User:
    data = await refresh_access_token(decrypt(user.refresh_token))
    store_tokens(user, data)
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info("strava_token_refreshed", user_id=user.id, expires_at=user.token_expires_at)
    return user


async def ensure_valid_token(session: Session, user: User) -> str:
    """Return a plaintext access token, refreshing it first if it is about to expire."""

    remaining = user.token_expires_at - int(time.time())
    if remaining < REFRESH_MARGIN_SEC:
        user = await refresh_user_token(session, user)
    return decrypt(user.access_token)


__all__ = [
    "API_BASE",
    "AUTH_BASE",
    "REFRESH_MARGIN_SEC",
    "SCOPES",
    "TOKEN_URL",
    "activity_summary",
    "api_get",
    "auth_url",
    "ensure_valid_token",
    "exchange_code_for_token",
    "fetch_activity",
    "is_running_activity",
    "list_activities",
    "refresh_access_token",
    "refresh_user_token",
    "store_tokens",
]
