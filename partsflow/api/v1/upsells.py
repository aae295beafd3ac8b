"""
Public upsell catalog.
"""

from fastapi import APIRouter

from partsflow.api.deps import DatabaseSession
from partsflow.schemas.notifications import UpsellResponse
from partsflow.services.upsells.repository import UpsellRepository

router = APIRouter(prefix="/upsells", tags=["upsells"])


@router.get("", response_model=list[UpsellResponse], summary="List active upsells")
async def list_upsells(db: DatabaseSession) -> list[UpsellResponse]:
    upsells = await UpsellRepository(db).list_active()
    return [UpsellResponse.model_validate(u) for u in upsells]
