"""System-level API endpoints."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter

from ...core import BACKEND_URL, MAPBOX_TOKEN

router = APIRouter(tags=["system"])


@router.get("/health")
def health() -> Dict[str, Any]:
    """Simple readiness probe."""

    return {"ok": True, "service": "getout-space"}


@router.get("/config")
def get_config() -> Dict[str, Any]:
    """Expose frontend configuration values."""

    return {"backend_url": BACKEND_URL, "mapbox_token": MAPBOX_TOKEN}


__all__ = ["router"]
