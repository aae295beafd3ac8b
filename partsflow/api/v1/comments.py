"""
Order comment endpoints.
"""

from uuid import UUID

from fastapi import APIRouter, status

from partsflow.api.deps import (
    CommentServiceDep,
    DatabaseSession,
    MagicLinkToken,
    OptionalSessionClaims,
)
from partsflow.schemas.notifications import CommentCreateRequest, CommentResponse

router = APIRouter(prefix="/orders", tags=["comments"])


@router.get(
    "/{order_id}/comments",
    response_model=list[CommentResponse],
    summary="List comments on an order",
)
async def list_comments(
    order_id: UUID,
    claims: OptionalSessionClaims,
    service: CommentServiceDep,
    token: MagicLinkToken = None,
) -> list[CommentResponse]:
    comments = await service.list_comments(claims, token, order_id)
    return [CommentResponse.model_validate(c) for c in comments]


@router.post(
    "/{order_id}/comments",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a comment to an order",
)
async def add_comment(
    order_id: UUID,
    body: CommentCreateRequest,
    claims: OptionalSessionClaims,
    service: CommentServiceDep,
    db: DatabaseSession,
    token: MagicLinkToken = None,
) -> CommentResponse:
    comment = await service.add_comment(
        claims, token, order_id, body.body, is_internal=body.is_internal
    )
    await db.commit()
    await service.dispatcher.send_pending()
    return CommentResponse.model_validate(comment)
