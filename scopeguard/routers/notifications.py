from __future__ import annotations

from fastapi import APIRouter, Depends

from scopeguard.authz.tokens import TokenClaims
from scopeguard.models.workflow import Notification
from scopeguard.schemas.workflow import MarkAllReadOut, NotificationListOut, NotificationOut
from scopeguard.security.dependencies import get_claims, get_notification_service
from scopeguard.services.notifications import NotificationService

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationListOut)
def list_notifications(
    unread_only: bool = False,
    limit: int = 50,
    claims: TokenClaims = Depends(get_claims),
    service: NotificationService = Depends(get_notification_service),
) -> NotificationListOut:
    items = service.list_for_user(claims.subject, unread_only=unread_only, limit=min(max(limit, 1), 200))
    return NotificationListOut(
        unread=service.unread_count(claims.subject),
        notifications=[NotificationOut.model_validate(n) for n in items],
    )


@router.post("/read-all", response_model=MarkAllReadOut)
def mark_all_read(
    claims: TokenClaims = Depends(get_claims),
    service: NotificationService = Depends(get_notification_service),
) -> MarkAllReadOut:
    return MarkAllReadOut(updated=service.mark_all_read(claims.subject))


@router.post("/{notification_id}/read", response_model=NotificationOut)
def mark_read(
    notification_id: int,
    claims: TokenClaims = Depends(get_claims),
    service: NotificationService = Depends(get_notification_service),
) -> Notification:
    return service.mark_read(claims.subject, notification_id)
