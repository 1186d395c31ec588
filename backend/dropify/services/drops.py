"""Drop issuance: admission checks, commerce saga and ledger commit.

Flow for one claim::

    [owner lock] -> sequences -> quota -> cooldown -> claimant cap -> reserve slot
        -> code -> price rule -> discount code -> commit

The reserve step inserts a `DropReservation` whose owner/claimant sequence numbers are unique
and were read before the checks, so two claims admitted against the same ledger state cannot
both land. External calls happen only after the slot is committed; a failed call releases the
slot and no Drop is written.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import random
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Protocol, Union
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from dropify.core import metrics
from dropify.core.config import settings
from dropify.models.drop import GLOBAL_CLAIMANT_ID, Drop, DropKind, DropReservation, DropReservationStatus
from dropify.models.owner import DiscountType, Owner
from dropify.services import ledger
from dropify.services import owners as owners_service
from dropify.services.codes import generate_code
from dropify.services.commerce import (
    CommerceError,
    DiscountCodeError,
    PricingRuleSpec,
    ShopConnection,
    ShopifyAdapter,
)
from dropify.services.cooldown import check_claimant_cap, check_owner_cooldown
from dropify.services.plan_limits import QuotaLedger

logger = logging.getLogger(__name__)


class RejectionReason(str, enum.Enum):
    owner_not_found = "owner_not_found"
    owner_not_connected = "owner_not_connected"
    owner_disabled = "owner_disabled"
    quota_exceeded = "quota_exceeded"
    cooldown = "cooldown"
    cap_reached = "cap_reached"


class FailureCause(str, enum.Enum):
    pricing_rule_failed = "pricing_rule_failed"
    discount_code_failed = "discount_code_failed"
    admission_contention = "admission_contention"


@dataclass(frozen=True)
class Claimant:
    viewer_id: str
    viewer_login: str
    viewer_display_name: str | None = None


@dataclass(frozen=True)
class DropCompleted:
    drop_id: UUID
    kind: DropKind
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    cooldown_seconds: int
    max_per_viewer_per_stream: int | None = None


@dataclass(frozen=True)
class DropRejected:
    reason: RejectionReason
    retry_after_seconds: int | None = None
    used: int | None = None
    limit: int | None = None
    plan: str | None = None
    max_per_viewer_per_stream: int | None = None


@dataclass(frozen=True)
class DropInvalid:
    detail: str


@dataclass(frozen=True)
class DropFailed:
    cause: FailureCause


DropResult = Union[DropCompleted, DropRejected, DropInvalid, DropFailed]


class CommerceClient(Protocol):
    async def create_pricing_rule(self, connection: ShopConnection, spec: PricingRuleSpec) -> str: ...

    async def attach_discount_code(self, connection: ShopConnection, rule_id: str, code: str) -> str: ...


@dataclass(frozen=True)
class _OwnerState:
    """Owner fields the issuance needs, read once so no ORM attribute is touched after a commit."""

    id: UUID
    login: str
    plan: str | None
    cooldown_seconds: int

    @classmethod
    def of(cls, owner: Owner) -> _OwnerState:
        return cls(
            id=owner.id,
            login=owner.login,
            plan=owner.plan,
            cooldown_seconds=int(owner.global_cooldown_seconds or 0),
        )


@dataclass(frozen=True)
class _Slot:
    reservation_id: UUID
    reserved_at: datetime


@dataclass(frozen=True)
class _IssueRequest:
    kind: DropKind
    claimant_id: str
    claimant_login: str
    claimant_display_name: str | None
    code_prefix: str
    code_handle: str
    rule: PricingRuleSpec
    max_per_window: int | None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _validate_claimant(claimant: Claimant | None) -> DropInvalid | None:
    if claimant is None:
        return DropInvalid(detail="claimant is required")
    if not str(claimant.viewer_id or "").strip() or not str(claimant.viewer_login or "").strip():
        return DropInvalid(detail="viewer_id and viewer_login are required")
    if len(str(claimant.viewer_id).strip()) > 64 or len(str(claimant.viewer_login).strip()) > 64:
        return DropInvalid(detail="viewer_id and viewer_login must be at most 64 characters")
    return None


def _validate_percent(percent: object) -> DropInvalid | None:
    upper = int(settings.global_drop_max_percent)
    if isinstance(percent, bool) or not isinstance(percent, int) or not 1 <= percent <= upper:
        return DropInvalid(detail=f"percent must be an integer between 1 and {upper}")
    return None


class DropIssuanceEngine:
    def __init__(
        self,
        *,
        commerce: CommerceClient | None = None,
        quota: QuotaLedger | None = None,
        clock: Callable[[], datetime] | None = None,
        rng: random.Random | None = None,
        call_timeout: float | None = None,
        stream_window: timedelta | None = None,
        max_attempts: int | None = None,
    ) -> None:
        self.commerce = commerce or ShopifyAdapter()
        self.quota = quota or QuotaLedger()
        self.clock = clock or _now
        self.rng = rng
        self.call_timeout = float(call_timeout if call_timeout is not None else settings.commerce_timeout_seconds)
        self.stream_window = stream_window or timedelta(hours=settings.stream_window_hours)
        self.max_attempts = max(1, int(max_attempts or settings.admission_max_attempts))

    async def issue_viewer_drop(self, session: AsyncSession, owner_login: str, claimant: Claimant | None) -> DropResult:
        invalid = _validate_claimant(claimant)
        if invalid is not None:
            return invalid
        assert claimant is not None

        owner = await owners_service.get_owner_by_login(session, owner_login)
        rejected = self._gate_owner(owner, require_enabled=True)
        if rejected is not None:
            return rejected
        assert owner is not None

        login = str(claimant.viewer_login).strip().lower()
        request = _IssueRequest(
            kind=DropKind.viewer,
            claimant_id=str(claimant.viewer_id).strip(),
            claimant_login=login,
            claimant_display_name=claimant.viewer_display_name or login,
            code_prefix=(owner.discount_prefix or "DROP-").upper(),
            code_handle=login,
            rule=PricingRuleSpec(
                discount_type=owner.discount_type,
                discount_value=Decimal(owner.discount_value),
                usage_limit=1,
                duration_minutes=settings.viewer_code_duration_minutes,
                min_subtotal=Decimal(owner.order_min_subtotal or 0),
            ),
            max_per_window=int(owner.max_per_viewer_per_stream),
        )
        return await self._issue(session, owner, request)

    async def issue_global_drop(self, session: AsyncSession, owner_login: str, percent: int) -> DropResult:
        invalid = _validate_percent(percent)
        if invalid is not None:
            return invalid

        owner = await owners_service.get_owner_by_login(session, owner_login)
        rejected = self._gate_owner(owner, require_enabled=False)
        if rejected is not None:
            return rejected
        assert owner is not None

        request = _IssueRequest(
            kind=DropKind.global_,
            claimant_id=GLOBAL_CLAIMANT_ID,
            claimant_login=owner.login,
            claimant_display_name=owner.display_name or owner.login,
            code_prefix="",
            code_handle=f"{owner.login}{percent}",
            rule=PricingRuleSpec(
                discount_type=DiscountType.percentage,
                discount_value=Decimal(percent),
                usage_limit=None,
                duration_minutes=settings.global_code_duration_minutes,
            ),
            max_per_window=None,
        )
        return await self._issue(session, owner, request)

    def _gate_owner(self, owner: Owner | None, *, require_enabled: bool) -> DropRejected | None:
        if owner is None:
            return self._reject(DropRejected(reason=RejectionReason.owner_not_found))
        if not owner.shop_connected:
            return self._reject(DropRejected(reason=RejectionReason.owner_not_connected))
        if require_enabled and not owner.enabled:
            return self._reject(DropRejected(reason=RejectionReason.owner_disabled))
        return None

    def _reject(self, rejected: DropRejected) -> DropRejected:
        metrics.record_drop_rejected(rejected.reason.value)
        return rejected

    async def _check_policies(
        self, session: AsyncSession, owner: _OwnerState, request: _IssueRequest, *, now: datetime
    ) -> DropRejected | None:
        quota = await self.quota.check(session, owner_id=owner.id, plan=owner.plan, kind=request.kind, now=now)
        if not quota.admitted:
            return DropRejected(
                reason=RejectionReason.quota_exceeded, used=quota.used, limit=quota.limit, plan=quota.plan
            )

        cooldown = await check_owner_cooldown(
            session, owner_id=owner.id, cooldown_seconds=owner.cooldown_seconds, now=now
        )
        if not cooldown.admitted:
            return DropRejected(reason=RejectionReason.cooldown, retry_after_seconds=cooldown.retry_after_seconds)

        if request.kind == DropKind.viewer:
            cap = await check_claimant_cap(
                session,
                owner_id=owner.id,
                claimant_id=request.claimant_id,
                max_per_window=int(request.max_per_window or 0),
                now=now,
                window=self.stream_window,
            )
            if not cap.admitted:
                return DropRejected(reason=RejectionReason.cap_reached, max_per_viewer_per_stream=cap.max_per_window)
        return None

    async def _admit(
        self, session: AsyncSession, owner: _OwnerState, request: _IssueRequest
    ) -> _Slot | DropRejected | DropFailed:
        # Cooldown and quota span every claimant, so those admissions queue on the owner lock.
        # A claim bound only by the claimant cap competes with that claimant alone.
        owner_wide = owner.cooldown_seconds > 0 or self.quota.limit_for(owner.plan, request.kind) is not None
        capped = request.kind == DropKind.viewer and int(request.max_per_window or 0) > 0

        for attempt in range(1, self.max_attempts + 1):
            now = self.clock()

            owner_seq: int | None = None
            if owner_wide:
                await ledger.lock_owner(session, owner_id=owner.id)
                owner_seq = await ledger.next_owner_seq(session, owner_id=owner.id)
            claimant_seq: int | None = None
            if capped:
                claimant_seq = await ledger.next_claimant_seq(
                    session, owner_id=owner.id, claimant_id=request.claimant_id
                )

            rejected = await self._check_policies(session, owner, request, now=now)
            if rejected is not None:
                await session.rollback()
                return self._reject(rejected)

            slot = _Slot(reservation_id=uuid.uuid4(), reserved_at=now)
            reservation = DropReservation(
                id=slot.reservation_id,
                owner_id=owner.id,
                kind=request.kind,
                claimant_id=request.claimant_id,
                owner_seq=owner_seq,
                claimant_seq=claimant_seq,
                status=DropReservationStatus.reserved,
                reserved_at=now,
                expires_at=now + timedelta(seconds=int(settings.reservation_ttl_seconds)),
            )
            session.add(reservation)
            try:
                await session.commit()
            except IntegrityError:
                # A slot was committed after our sequences were read; re-run the checks against it.
                await session.rollback()
                metrics.record_admission_conflict()
                logger.info(
                    "drop_admission_conflict",
                    extra={"owner_login": owner.login, "kind": request.kind.value, "attempt": attempt},
                )
                continue
            return slot

        logger.warning(
            "drop_admission_exhausted",
            extra={"owner_login": owner.login, "kind": request.kind.value, "attempts": self.max_attempts},
        )
        return self._fail(FailureCause.admission_contention)

    async def _release(self, session: AsyncSession, reservation_id: UUID) -> None:
        await session.execute(
            update(DropReservation)
            .where(DropReservation.id == reservation_id, DropReservation.status == DropReservationStatus.reserved)
            .values(status=DropReservationStatus.released)
            .execution_options(synchronize_session=False)
        )
        await session.commit()

    async def _call(self, awaitable):  # type: ignore[no-untyped-def]
        try:
            return await asyncio.wait_for(awaitable, timeout=self.call_timeout)
        except asyncio.TimeoutError as exc:
            raise CommerceError("Commerce call timed out") from exc

    def _fail(self, cause: FailureCause) -> DropFailed:
        metrics.record_drop_failed(cause.value)
        return DropFailed(cause=cause)

    async def _issue(self, session: AsyncSession, owner: Owner, request: _IssueRequest) -> DropResult:
        state = _OwnerState.of(owner)
        connection = ShopConnection.for_owner(owner)
        if connection is None:
            return self._reject(DropRejected(reason=RejectionReason.owner_not_connected))

        admitted = await self._admit(session, state, request)
        if not isinstance(admitted, _Slot):
            return admitted
        reservation_id = admitted.reservation_id
        created_at = admitted.reserved_at
        log_context = {
            "owner_login": state.login,
            "shop_domain": connection.domain,
            "kind": request.kind.value,
            "reservation_id": str(reservation_id),
        }

        code = generate_code(request.code_prefix, request.code_handle, rng=self.rng)

        try:
            rule_id = await self._call(self.commerce.create_pricing_rule(connection, request.rule))
        except CommerceError:
            await self._release(session, reservation_id)
            logger.exception("drop_pricing_rule_failed", extra=log_context)
            return self._fail(FailureCause.pricing_rule_failed)
        except BaseException:
            await self._release(session, reservation_id)
            raise

        try:
            discount_id = await self._call(self.commerce.attach_discount_code(connection, rule_id, code))
        except CommerceError as exc:
            await self._release(session, reservation_id)
            # The rule stays on the platform unused until its ends_at passes.
            orphaned = exc.rule_id if isinstance(exc, DiscountCodeError) else rule_id
            logger.exception("drop_discount_code_failed", extra={**log_context, "orphaned_price_rule_id": orphaned})
            return self._fail(FailureCause.discount_code_failed)
        except BaseException:
            await self._release(session, reservation_id)
            raise

        drop_id = uuid.uuid4()
        session.add(
            Drop(
                id=drop_id,
                owner_id=state.id,
                owner_login=state.login,
                reservation_id=reservation_id,
                kind=request.kind,
                claimant_id=request.claimant_id,
                claimant_login=request.claimant_login,
                claimant_display_name=request.claimant_display_name,
                code=code,
                discount_type=request.rule.discount_type,
                discount_value=request.rule.discount_value,
                price_rule_id=str(rule_id),
                discount_id=str(discount_id),
                created_at=created_at,
            )
        )
        await session.execute(
            update(DropReservation)
            .where(DropReservation.id == reservation_id)
            .values(status=DropReservationStatus.committed)
            .execution_options(synchronize_session=False)
        )
        await session.commit()

        metrics.record_drop_issued(request.kind.value)
        logger.info(
            "drop_issued",
            extra={**log_context, "drop_id": str(drop_id), "price_rule_id": str(rule_id), "discount_id": str(discount_id)},
        )
        return DropCompleted(
            drop_id=drop_id,
            kind=request.kind,
            code=code,
            discount_type=request.rule.discount_type,
            discount_value=request.rule.discount_value,
            cooldown_seconds=state.cooldown_seconds,
            max_per_viewer_per_stream=request.max_per_window,
        )


async def recent_drops(session: AsyncSession, *, owner_login: str, limit: int = 10) -> list[Drop]:
    login = owners_service.normalize_login(owner_login)
    rows = await session.execute(
        select(Drop).where(Drop.owner_login == login).order_by(Drop.created_at.desc()).limit(max(1, int(limit)))
    )
    return list(rows.scalars().all())
