from datetime import datetime

from pydantic import BaseModel


class PlanLimitsRead(BaseModel):
    viewer_drops_per_month: int | None
    global_drops_per_month: int | None


class PlanUsageRead(BaseModel):
    viewer_drops_this_month: int
    global_drops_this_month: int


class PlanPeriodRead(BaseModel):
    month_start: datetime
    month_end: datetime
    now: datetime


class PlanResponse(BaseModel):
    ok: bool = True
    login: str
    plan: str
    limits: PlanLimitsRead
    usage: PlanUsageRead
    period: PlanPeriodRead


class PlanResetResponse(BaseModel):
    ok: bool = True
    login: str
    kind: str | None = None
    deleted: int
    month_start: datetime
    month_end: datetime
