from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from dropify.core.dependencies import get_owner_or_404
from dropify.db.session import get_session
from dropify.models.owner import Owner
from dropify.schemas.plan import PlanLimitsRead, PlanPeriodRead, PlanResponse, PlanUsageRead
from dropify.services.plan_limits import QuotaLedger, plan_usage

router = APIRouter(prefix="/plan", tags=["plan"])


@router.get("/{login}", response_model=PlanResponse)
async def get_plan(
    owner: Owner = Depends(get_owner_or_404),
    session: AsyncSession = Depends(get_session),
) -> PlanResponse:
    usage = await plan_usage(session, owner=owner, quota=QuotaLedger())
    return PlanResponse(
        login=owner.login,
        plan=usage.plan,
        limits=PlanLimitsRead(
            viewer_drops_per_month=usage.limits.viewer_drops_per_month,
            global_drops_per_month=usage.limits.global_drops_per_month,
        ),
        usage=PlanUsageRead(
            viewer_drops_this_month=usage.viewer_used,
            global_drops_this_month=usage.global_used,
        ),
        period=PlanPeriodRead(month_start=usage.window.start, month_end=usage.window.end, now=usage.now),
    )
