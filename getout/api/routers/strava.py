"""Strava login, activity browsing, webhook and live feed routes."""

from __future__ import annotations

from typing import Any, Dict

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from ...core import STRAVA_WEBHOOK_VERIFY_TOKEN, get_session
from ...core.security import create_access_token
from ...errors import GetOutError, NotFoundError
from ...models import Activity, User
from ...models.activity import SOURCE_WEBHOOK
from ...services import capture, strava, users
from ...services.events import sse_stream, webhook_feed
from ..deps import get_current_user

router = APIRouter(prefix="/api/strava", tags=["strava"])

logger = structlog.get_logger(__name__)


@router.get("/auth-url")
def strava_auth_url(state: str = "state1") -> Dict[str, str]:
    return {"auth_url": strava.auth_url(state)}


@router.post("/callback")
async def strava_callback(body: Dict[str, Any], session: Session = Depends(get_session)):
    """Exchange an OAuth code for tokens and sign the player in."""

    code = (body.get("code") or "").strip()
    if not code:
        raise HTTPException(400, "Authorization code is required")

    token_data = await strava.exchange_code_for_token(code)
    user = users.upsert_from_strava(session, token_data)
    return {
        "token": create_access_token(user.id, user.strava_id, user.is_admin),
        "user": users.user_to_dict(user),
    }


@router.get("/activities")
async def list_activities(
    page: int = Query(1, ge=1),
    per_page: int = Query(30, ge=1, le=200),
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """One page of the caller's Strava activities, flagged with whether each was already processed."""

    access_token = await strava.ensure_valid_token(session, user)
    raw = await strava.list_activities(access_token, page=page, per_page=per_page)

    ids = [int(item["id"]) for item in raw]
    processed = set()
    if ids:
        processed = set(
            session.exec(
                select(Activity.strava_activity_id).where(Activity.strava_activity_id.in_(ids))
            ).all()
        )

    items = []
    for item in raw:
        summary = strava.activity_summary(item)
        summary["processed"] = int(item["id"]) in processed
        items.append(summary)
    return {"activities": items, "page": page, "per_page": per_page}


@router.get("/activities/{activity_id}")
async def get_activity(
    activity_id: int,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    access_token = await strava.ensure_valid_token(session, user)
    return await strava.fetch_activity(activity_id, access_token)


@router.get("/events")
async def activity_events():
    """Server-sent events relaying every webhook Strava delivers."""

    return StreamingResponse(
        sse_stream(webhook_feed),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
    )


@router.get("/webhook")
def verify_webhook(request: Request):
    """Answer Strava's subscription handshake."""

    params = request.query_params
    mode = params.get("hub.mode")
    token = params.get("hub.verify_token")
    challenge = params.get("hub.challenge")

    if mode == "subscribe" and token == STRAVA_WEBHOOK_VERIFY_TOKEN:
        logger.info("webhook_verified")
        return {"hub.challenge": challenge}

    logger.warning("webhook_verification_failed", mode=mode)
    return JSONResponse(status_code=403, content={"error": "Verification failed"})


async def handle_webhook_event(bind: Engine, event: Dict[str, Any]) -> None:
    """Apply one webhook event with a session of its own."""

    object_type = event.get("object_type")
    aspect_type = event.get("aspect_type")
    object_id = event.get("object_id")
    owner_id = event.get("owner_id")
    log = logger.bind(object_type=object_type, aspect_type=aspect_type, object_id=object_id)

    if object_type != "activity" or object_id is None or owner_id is None:
        log.info("webhook_event_ignored", updates=event.get("updates"))
        return

    with Session(bind) as session:
        user = session.exec(select(User).where(User.strava_id == int(owner_id))).first()
        if user is None:
            log.info("webhook_unknown_athlete", owner_id=owner_id)
            return

        try:
            if aspect_type == "delete":
                capture.delete_activity_and_restore(
                    session, strava_activity_id=int(object_id), user=user
                )
            elif aspect_type in ("create", "update"):
                await capture.process_activity(
                    session,
                    strava_activity_id=int(object_id),
                    user=user,
                    source=SOURCE_WEBHOOK,
                )
            else:
                log.info("webhook_event_ignored")
        except NotFoundError:
            log.info("webhook_activity_not_found")
        except GetOutError as exc:
            log.info("webhook_activity_skipped", reason=exc.detail)
        except Exception:
            # nobody is waiting on the response any more
            log.exception("webhook_event_failed")


@router.post("/webhook")
async def receive_webhook(
    event: Dict[str, Any],
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
):
    """Acknowledge right away; Strava retries anything slower than two seconds."""

    logger.info(
        "webhook_event_received",
        object_type=event.get("object_type"),
        aspect_type=event.get("aspect_type"),
        object_id=event.get("object_id"),
    )
    background_tasks.add_task(handle_webhook_event, session.get_bind(), event)
    webhook_feed.publish(event)
    return {"success": True}


__all__ = ["handle_webhook_event", "router"]
