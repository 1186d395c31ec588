from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from dropify.core.dependencies import get_owner_or_404, require_admin
from dropify.db.session import get_session
from dropify.models.drop import DropKind
from dropify.models.owner import Owner
from dropify.schemas.plan import PlanResetResponse
from dropify.services.plan_limits import PlanResetBlocked, reset_monthly_drop_usage

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.post("/plan/{login}/reset", response_model=PlanResetResponse)
async def reset_plan_usage(
    owner: Owner = Depends(get_owner_or_404),
    kind: DropKind | None = Query(default=None),
    session: AsyncSession = Depends(get_session),
) -> PlanResetResponse:
    try:
        result = await reset_monthly_drop_usage(session, owner_id=owner.id, kind=kind)
    except PlanResetBlocked as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    return PlanResetResponse(
        login=owner.login,
        kind=kind.value if kind else None,
        deleted=result.deleted,
        month_start=result.window.start,
        month_end=result.window.end,
    )
