from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Mapping
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from dropify.core.config import settings
from dropify.models.drop import Drop, DropKind, DropReservation, DropReservationStatus
from dropify.models.owner import Owner
from dropify.services import ledger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TierLimits:
    """Monthly limits for a plan tier. None = unlimited, 0 = forbidden."""

    viewer_drops_per_month: int | None
    global_drops_per_month: int | None

    def limit_for(self, kind: DropKind) -> int | None:
        raw = self.global_drops_per_month if kind == DropKind.global_ else self.viewer_drops_per_month
        if raw is None:
            return None
        return max(0, int(raw))

    def restrictiveness(self) -> tuple[float, float]:
        """Sort key: smaller means stricter, unlimited sorts last."""
        viewer, global_ = (
            math.inf if value is None else float(max(0, int(value)))
            for value in (self.viewer_drops_per_month, self.global_drops_per_month)
        )
        return viewer, global_


@dataclass(frozen=True)
class PlanLimits:
    """Immutable tier table. `fallback_tier` absorbs unknown plans; `from_mapping` picks the strictest tier."""

    tiers: Mapping[str, TierLimits]
    fallback_tier: str
    default_tier: str | None = None

    def __post_init__(self) -> None:
        if self.fallback_tier not in self.tiers:
            raise ValueError(f"Fallback tier {self.fallback_tier!r} is not a configured plan")
        object.__setattr__(self, "tiers", MappingProxyType(dict(self.tiers)))

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Mapping[str, int | None]], *, default_tier: str | None = None) -> PlanLimits:
        if not raw:
            raise ValueError("At least one plan tier is required")
        tiers = {
            str(name).strip().lower(): TierLimits(
                viewer_drops_per_month=values.get("viewer_drops_per_month"),
                global_drops_per_month=values.get("global_drops_per_month"),
            )
            for name, values in raw.items()
        }
        fallback = min(tiers, key=lambda name: tiers[name].restrictiveness())
        return cls(tiers=tiers, fallback_tier=fallback, default_tier=(default_tier or "").strip().lower() or None)

    def resolve_tier(self, plan: str | None) -> str:
        cleaned = (plan or "").strip().lower()
        if cleaned in self.tiers:
            return cleaned
        if not cleaned and self.default_tier in self.tiers:
            return str(self.default_tier)
        return self.fallback_tier

    def limits_for(self, plan: str | None) -> TierLimits:
        return self.tiers[self.resolve_tier(plan)]


def default_plan_limits() -> PlanLimits:
    return PlanLimits.from_mapping(settings.plan_limits, default_tier=settings.default_plan)


@dataclass(frozen=True)
class QuotaWindow:
    start: datetime
    end: datetime


def current_month_window(now: datetime, *, tz_name: str | None = None) -> QuotaWindow:
    """Calendar month containing `now` in the reference time zone, returned in UTC."""
    tz = ZoneInfo(tz_name or settings.quota_timezone or "UTC")
    local = now.astimezone(tz)
    start = local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return QuotaWindow(start=start.astimezone(timezone.utc), end=end.astimezone(timezone.utc))


@dataclass(frozen=True)
class QuotaCheck:
    admitted: bool
    used: int
    limit: int | None
    plan: str


class QuotaLedger:
    def __init__(self, plan_limits: PlanLimits | None = None, *, tz_name: str | None = None) -> None:
        self.plan_limits = plan_limits or default_plan_limits()
        self.tz_name = tz_name

    def window(self, now: datetime) -> QuotaWindow:
        return current_month_window(now, tz_name=self.tz_name)

    async def monthly_usage(self, session: AsyncSession, *, owner_id: UUID, kind: DropKind, now: datetime) -> int:
        window = self.window(now)
        return await ledger.count_slots(
            session, owner_id=owner_id, now=now, since=window.start, until=window.end, kind=kind
        )

    def limit_for(self, plan: str | None, kind: DropKind) -> int | None:
        return self.plan_limits.limits_for(plan).limit_for(kind)

    async def check_quota(self, session: AsyncSession, *, owner: Owner, kind: DropKind, now: datetime) -> QuotaCheck:
        return await self.check(session, owner_id=owner.id, plan=owner.plan, kind=kind, now=now)

    async def check(
        self, session: AsyncSession, *, owner_id: UUID, plan: str | None, kind: DropKind, now: datetime
    ) -> QuotaCheck:
        tier = self.plan_limits.resolve_tier(plan)
        limit = self.plan_limits.tiers[tier].limit_for(kind)
        used = await self.monthly_usage(session, owner_id=owner_id, kind=kind, now=now)
        if limit is None:
            return QuotaCheck(admitted=True, used=used, limit=None, plan=tier)
        return QuotaCheck(admitted=used < limit, used=used, limit=limit, plan=tier)


@dataclass(frozen=True)
class PlanUsage:
    plan: str
    limits: TierLimits
    viewer_used: int
    global_used: int
    window: QuotaWindow
    now: datetime


async def plan_usage(session: AsyncSession, *, owner: Owner, quota: QuotaLedger, now: datetime | None = None) -> PlanUsage:
    now = now or datetime.now(timezone.utc)
    plan = quota.plan_limits.resolve_tier(owner.plan)
    return PlanUsage(
        plan=plan,
        limits=quota.plan_limits.tiers[plan],
        viewer_used=await quota.monthly_usage(session, owner_id=owner.id, kind=DropKind.viewer, now=now),
        global_used=await quota.monthly_usage(session, owner_id=owner.id, kind=DropKind.global_, now=now),
        window=quota.window(now),
        now=now,
    )


class PlanResetBlocked(Exception):
    pass


@dataclass(frozen=True)
class PlanResetResult:
    deleted: int
    window: QuotaWindow


async def reset_monthly_drop_usage(
    session: AsyncSession,
    *,
    owner_id: UUID,
    kind: DropKind | None = None,
    quota: QuotaLedger | None = None,
    now: datetime | None = None,
) -> PlanResetResult:
    """Delete this month's drops for an owner. Test environments only (ALLOW_PLAN_RESET=true)."""
    if not settings.allow_plan_reset:
        raise PlanResetBlocked("Reset blocked. Set ALLOW_PLAN_RESET=true to enable resets.")

    now = now or datetime.now(timezone.utc)
    window = (quota or QuotaLedger()).window(now)
    slot_filter = [
        DropReservation.owner_id == owner_id,
        DropReservation.reserved_at >= window.start,
        DropReservation.reserved_at < window.end,
    ]
    if kind is not None:
        slot_filter.append(DropReservation.kind == kind)

    slot_ids = select(DropReservation.id).where(*slot_filter)
    result = await session.execute(delete(Drop).where(Drop.reservation_id.in_(slot_ids)))
    # Slots are released rather than deleted so admission sequences stay monotonic.
    await session.execute(
        update(DropReservation).where(*slot_filter).values(status=DropReservationStatus.released)
    )
    await session.commit()

    deleted = int(result.rowcount or 0)
    logger.info(
        "plan_usage_reset",
        extra={"owner_id": str(owner_id), "kind": kind.value if kind else None, "deleted": deleted},
    )
    return PlanResetResult(deleted=deleted, window=window)
