"""Queries over the drop admission ledger.

Every windowed policy counts `DropReservation` slots rather than `Drop` rows: a committed slot
shares its timestamp with its Drop, and an un-expired reserved slot is an issuance whose
commerce calls are still in flight, so concurrent admissions see each other.

Slots are never deleted (failed issuances and resets mark them released), so the per-owner
and per-claimant sequences never repeat a value. Sequences are read before the policy checks:
any slot committed after that read takes the same or a later value, and the slot holding the
next value collides with ours.
"""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from dropify.models.drop import DropKind, DropReservation, DropReservationStatus
from dropify.models.owner import Owner


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def live_slot(now: datetime) -> ColumnElement[bool]:
    return or_(
        DropReservation.status == DropReservationStatus.committed,
        and_(DropReservation.status == DropReservationStatus.reserved, DropReservation.expires_at > now),
    )


async def count_slots(
    session: AsyncSession,
    *,
    owner_id: UUID,
    now: datetime,
    since: datetime,
    until: datetime | None = None,
    kind: DropKind | None = None,
    claimant_id: str | None = None,
) -> int:
    query = (
        select(func.count())
        .select_from(DropReservation)
        .where(DropReservation.owner_id == owner_id, DropReservation.reserved_at >= since, live_slot(now))
    )
    if until is not None:
        query = query.where(DropReservation.reserved_at < until)
    if kind is not None:
        query = query.where(DropReservation.kind == kind)
    if claimant_id is not None:
        query = query.where(DropReservation.claimant_id == claimant_id)
    return int((await session.execute(query)).scalar_one() or 0)


async def latest_slot_at(session: AsyncSession, *, owner_id: UUID, now: datetime) -> datetime | None:
    value = (
        await session.execute(
            select(func.max(DropReservation.reserved_at)).where(DropReservation.owner_id == owner_id, live_slot(now))
        )
    ).scalar_one_or_none()
    return as_utc(value)


async def next_owner_seq(session: AsyncSession, *, owner_id: UUID) -> int:
    current = (
        await session.execute(select(func.max(DropReservation.owner_seq)).where(DropReservation.owner_id == owner_id))
    ).scalar_one_or_none()
    return int(current or 0) + 1


async def next_claimant_seq(session: AsyncSession, *, owner_id: UUID, claimant_id: str) -> int:
    current = (
        await session.execute(
            select(func.max(DropReservation.claimant_seq)).where(
                DropReservation.owner_id == owner_id, DropReservation.claimant_id == claimant_id
            )
        )
    ).scalar_one_or_none()
    return int(current or 0) + 1


async def lock_owner(session: AsyncSession, *, owner_id: UUID) -> None:
    """Hold the owner's admission lock until the current transaction ends.

    A row write rather than SELECT ... FOR UPDATE: SQLite ignores FOR UPDATE but serialises
    writers, and Postgres takes the same row lock for both. Admissions that take this lock
    queue behind each other instead of failing on the sequence constraint.
    """
    await session.execute(
        update(Owner)
        .where(Owner.id == owner_id)
        .values(admission_version=Owner.admission_version + 1, updated_at=Owner.updated_at)
        .execution_options(synchronize_session=False)
    )
