from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from dropify.models.drop import DropKind
from dropify.services import ledger


@dataclass(frozen=True)
class CooldownCheck:
    admitted: bool
    retry_after_seconds: int | None = None
    last_drop_at: datetime | None = None


@dataclass(frozen=True)
class CapCheck:
    admitted: bool
    count: int
    max_per_window: int


def evaluate_cooldown(last_drop_at: datetime | None, *, cooldown_seconds: int, now: datetime) -> CooldownCheck:
    """Owner cooldown over drops of any kind: one shared spacing budget per owner."""
    if last_drop_at is None or cooldown_seconds <= 0:
        return CooldownCheck(admitted=True, last_drop_at=last_drop_at)

    cutoff = now - timedelta(seconds=cooldown_seconds)
    if last_drop_at < cutoff:
        return CooldownCheck(admitted=True, last_drop_at=last_drop_at)

    remaining = (last_drop_at - cutoff).total_seconds()
    return CooldownCheck(
        admitted=False,
        retry_after_seconds=max(1, int(math.ceil(remaining))),
        last_drop_at=last_drop_at,
    )


async def check_owner_cooldown(
    session: AsyncSession, *, owner_id: UUID, cooldown_seconds: int, now: datetime
) -> CooldownCheck:
    last_drop_at = await ledger.latest_slot_at(session, owner_id=owner_id, now=now)
    return evaluate_cooldown(last_drop_at, cooldown_seconds=cooldown_seconds, now=now)


async def check_claimant_cap(
    session: AsyncSession,
    *,
    owner_id: UUID,
    claimant_id: str,
    max_per_window: int,
    now: datetime,
    window: timedelta,
) -> CapCheck:
    """Viewer drops one claimant got from one owner in the rolling session window.

    A max of 0 turns the cap off; the stored default is 1.
    """
    if max_per_window <= 0:
        return CapCheck(admitted=True, count=0, max_per_window=0)

    count = await ledger.count_slots(
        session,
        owner_id=owner_id,
        now=now,
        since=now - window,
        kind=DropKind.viewer,
        claimant_id=claimant_id,
    )
    return CapCheck(admitted=count < max_per_window, count=count, max_per_window=max_per_window)
