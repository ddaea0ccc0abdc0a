"""Admin matching API — FastAPI router for diagnostics and manual review.

Re-run a matching pass, inspect ranked matches, record approve/reject
decisions, verify profiles and sweep the passes they are owed, resend
failed notifications, and tear down test data. All routes require HTTP
Basic Auth via the verify_admin dependency.
"""
# ruff: noqa: B008  — Depends() in function defaults is standard FastAPI

from __future__ import annotations

import logging
import uuid
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from organmatch.admin.auth import verify_admin
from organmatch.admin.events import emit
from organmatch.config import settings
from organmatch.db.engine import get_session
from organmatch.matching.service import matching_service
from organmatch.matching.store import MatchDecisionError, match_store
from organmatch.models.enums import MatchStatus, ProfileKind
from organmatch.models.match import MatchCandidate
from organmatch.models.notification import Notification
from organmatch.notifications.notifier import notifier
from organmatch.schemas.events import EventType, SystemEvent
from organmatch.schemas.matching import MatchScope
from organmatch.verification.service import verification_service
from organmatch.verification.trigger import sweep_missed_passes

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/matching", tags=["admin"])


# ── Request bodies ───────────────────────────────────────────────────


class RerunRequest(BaseModel):
    recipient_id: uuid.UUID | None = None


class DecisionRequest(BaseModel):
    decision: MatchStatus


class VerifyRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=2000)


class CleanupRequest(BaseModel):
    profile_ids: list[uuid.UUID] = Field(min_length=1)


# ── Serializers ──────────────────────────────────────────────────────


def _match_to_dict(match: MatchCandidate) -> dict[str, Any]:
    return {
        "id": str(match.id),
        "recipient_id": str(match.recipient_id),
        "donor_id": str(match.donor_id),
        "urgency_score": match.urgency_score,
        "location_score": match.location_score,
        "wait_time_score": match.wait_time_score,
        "age_gap_score": match.age_gap_score,
        "total_score": float(match.total_score),
        "status": match.status,
        "decided_by": match.decided_by,
        "decided_at": match.decided_at.isoformat() if match.decided_at else None,
        "created_at": match.created_at.isoformat() if match.created_at else None,
    }


def _notification_to_dict(notification: Notification) -> dict[str, Any]:
    return {
        "id": str(notification.id),
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "is_read": notification.is_read,
        "data": notification.data,
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }


async def _emit_admin(event_type: EventType, admin: str, data: dict[str, Any]) -> None:
    await emit(SystemEvent(
        event_type=event_type,
        actor_id=admin,
        actor_role="admin",
        data={**data, "interface": "api"},
        source_module="admin.web",
    ))


# ── Matching pass ────────────────────────────────────────────────────


@router.post("/run")
async def rerun_matching(
    body: RerunRequest,
    db: AsyncSession = Depends(get_session),
    admin: str = Depends(verify_admin),
) -> JSONResponse:
    """Run a pass for one recipient (or everyone) and return the ranked candidates."""
    await _emit_admin(EventType.ADMIN_RERUN, admin, {"recipient_id": str(body.recipient_id) if body.recipient_id else None})

    result = await matching_service.run_matching_pass(
        db, MatchScope(recipient_id=body.recipient_id), actor_id=admin
    )
    code = status.HTTP_200_OK if result.success else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(result.to_dict(), status_code=code)


@router.get("/profiles/{profile_id}/matches")
async def profile_matches(
    profile_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    admin: str = Depends(verify_admin),
) -> dict[str, Any]:
    """Every match where the profile is donor or recipient, best first."""
    await _emit_admin(EventType.ADMIN_ACCESS, admin, {"page": "profile_matches", "profile_id": str(profile_id)})
    matches = await match_store.list_for_profile(db, profile_id)
    return {"profile_id": str(profile_id), "matches": [_match_to_dict(m) for m in matches]}


@router.post("/matches/{match_id}/decision")
async def decide_match(
    match_id: uuid.UUID,
    body: DecisionRequest,
    db: AsyncSession = Depends(get_session),
    admin: str = Depends(verify_admin),
) -> dict[str, Any]:
    """Approve or reject a pending match."""
    try:
        match = await matching_service.decide_match(db, match_id, body.decision, decided_by=admin)
    except MatchDecisionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    if match is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Match not found")
    return _match_to_dict(match)


# ── Verification ─────────────────────────────────────────────────────


@router.post("/profiles/{kind}/{profile_id}/verify")
async def verify_profile(
    kind: ProfileKind,
    profile_id: uuid.UUID,
    body: VerifyRequest,
    db: AsyncSession = Depends(get_session),
    admin: str = Depends(verify_admin),
) -> dict[str, Any]:
    """Verify a pending profile; its matching pass is scheduled via the event bus."""
    try:
        profile = await verification_service.verify_profile(
            db, kind, profile_id, verified_by=admin, notes=body.notes
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{kind.value} profile not found")
    return {
        "id": str(profile.id),
        "kind": kind.value,
        "status": profile.status,
        "verified_at": profile.verified_at.isoformat() if profile.verified_at else None,
        "verified_by": profile.verified_by,
    }


@router.post("/verification/sweep")
async def sweep_verification_passes(admin: str = Depends(verify_admin)) -> dict[str, Any]:
    """Run every matching pass a verified profile is still owed."""
    await _emit_admin(EventType.ADMIN_RERUN, admin, {"page": "verification_sweep"})
    sweep = await sweep_missed_passes(actor_id=admin)
    return {"owed": sweep.owed, "completed": sweep.completed, "failed": sweep.failed}


# ── Notifications ────────────────────────────────────────────────────


@router.post("/notifications/retry")
async def retry_notifications(
    db: AsyncSession = Depends(get_session),
    admin: str = Depends(verify_admin),
) -> dict[str, int]:
    """Re-send notifications for matches whose delivery failed."""
    await _emit_admin(EventType.ADMIN_ACCESS, admin, {"page": "notification_retry"})
    sent = await notifier.retry_unsent(db)
    return {"notified": sent}


@router.get("/users/{user_id}/notifications")
async def unread_notifications(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    admin: str = Depends(verify_admin),
) -> dict[str, Any]:
    """Unread notifications for one user, newest first."""
    notifications = await notifier.list_unread(db, user_id)
    return {"user_id": str(user_id), "notifications": [_notification_to_dict(n) for n in notifications]}


@router.post("/notifications/{notification_id}/read")
async def mark_notification_read(
    notification_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    admin: str = Depends(verify_admin),
) -> dict[str, bool]:
    if not await notifier.mark_read(db, notification_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    return {"is_read": True}


# ── Teardown ─────────────────────────────────────────────────────────


@router.post("/cleanup")
async def cleanup_matches(
    body: CleanupRequest,
    db: AsyncSession = Depends(get_session),
    admin: str = Depends(verify_admin),
) -> dict[str, int]:
    """Delete matches touching the given profile ids. Disabled in production."""
    if settings.is_production:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cleanup not allowed in production")

    removed = await match_store.delete_for_profiles(db, body.profile_ids)
    logger.warning("Admin %s removed %d matches for %d profiles", admin, removed, len(body.profile_ids))
    await _emit_admin(
        EventType.ADMIN_CLEANUP, admin, {"profile_ids": [str(p) for p in body.profile_ids], "removed": removed}
    )
    return {"removed": removed}
