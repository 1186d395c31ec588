from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from dropify.db.session import get_session
from dropify.schemas.drop import DropRead, RecentDropsResponse
from dropify.services import drops as drops_service
from dropify.services.owners import normalize_login

router = APIRouter(prefix="/drops", tags=["drops"])


@router.get("/{login}/recent", response_model=RecentDropsResponse)
async def list_recent_drops(
    login: str = Path(..., min_length=1, max_length=64),
    limit: int = Query(default=10, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
) -> RecentDropsResponse:
    rows = await drops_service.recent_drops(session, owner_login=login, limit=limit)
    return RecentDropsResponse(login=normalize_login(login), drops=[DropRead.model_validate(row) for row in rows])
