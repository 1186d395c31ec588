from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from dropify.core.dependencies import get_owner_or_404
from dropify.db.session import get_session
from dropify.models.owner import Owner
from dropify.schemas.redemption import PaginationMeta, RedemptionListResponse, RedemptionRead
from dropify.services import redemptions as redemptions_service

router = APIRouter(prefix="/redemptions", tags=["redemptions"])


@router.get("/{login}", response_model=RedemptionListResponse)
async def list_redemptions(
    owner: Owner = Depends(get_owner_or_404),
    session: AsyncSession = Depends(get_session),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
) -> RedemptionListResponse:
    rows, total_items = await redemptions_service.list_redemptions(session, owner=owner, limit=limit, page=page)
    total_pages = max(1, (total_items + limit - 1) // limit) if total_items else 1
    return RedemptionListResponse(
        login=owner.login,
        items=[RedemptionRead.model_validate(row) for row in rows],
        meta=PaginationMeta(total_items=total_items, total_pages=total_pages, page=page, limit=limit),
    )
