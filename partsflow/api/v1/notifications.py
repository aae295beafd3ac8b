"""
In-app notification endpoints.

Users see their own rows, staff see back-office rows, and guests pass
``?token=&orderId=`` to see the rows of their order.
"""

from typing import Annotated

from fastapi import APIRouter, Query

from partsflow.api.deps import CurrentPrincipal, DatabaseSession, NotificationServiceDep
from partsflow.schemas.notifications import (
    MarkReadRequest,
    MarkReadResponse,
    NotificationListResponse,
    NotificationResponse,
)

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationListResponse, summary="List notifications")
async def list_notifications(
    principal: CurrentPrincipal,
    service: NotificationServiceDep,
    unread_only: Annotated[bool, Query(alias="unreadOnly")] = False,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> NotificationListResponse:
    notifications, unread_count = await service.list_notifications(
        principal, unread_only=unread_only, limit=limit, offset=offset
    )
    return NotificationListResponse(
        items=[NotificationResponse.model_validate(n) for n in notifications],
        unread_count=unread_count,
    )


@router.patch("", response_model=MarkReadResponse, summary="Mark notifications read")
async def mark_notifications_read(
    body: MarkReadRequest,
    principal: CurrentPrincipal,
    service: NotificationServiceDep,
    db: DatabaseSession,
) -> MarkReadResponse:
    updated = await service.mark_read(principal, ids=body.ids, mark_all=body.all)
    await db.commit()
    return MarkReadResponse(updated=updated)
