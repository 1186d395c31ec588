import asyncio
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from dropify.core import metrics
from dropify.db.base import Base
from dropify.models.drop import Drop, DropReservation, DropReservationStatus
from dropify.models.owner import Owner
from dropify.services.commerce import PricingRuleSpec, ShopConnection
from dropify.services.drops import (
    Claimant,
    DropCompleted,
    DropFailed,
    DropIssuanceEngine,
    DropRejected,
    RejectionReason,
)
from dropify.services.plan_limits import PlanLimits, QuotaLedger, TierLimits

NOW = datetime(2026, 6, 10, 19, 0, tzinfo=timezone.utc)


class SlowCommerce:
    """Yields to the event loop between steps so concurrent claims interleave."""

    def __init__(self) -> None:
        self.rules = 0

    async def create_pricing_rule(self, connection: ShopConnection, spec: PricingRuleSpec) -> str:
        await asyncio.sleep(0.01)
        self.rules += 1
        return str(self.rules)

    async def attach_discount_code(self, connection: ShopConnection, rule_id: str, code: str) -> str:
        await asyncio.sleep(0.01)
        return f"code-{rule_id}"


async def _file_backed_sessions(tmp_path: Path, name: str = "drops.db") -> async_sessionmaker:
    # A shared in-memory connection would serialize everything; each session needs its own connection.
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / name}", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return async_sessionmaker(engine, expire_on_commit=False)


async def _seed_owner(SessionLocal: async_sessionmaker, **overrides: object) -> None:
    values: dict[str, object] = {
        "login": "streamer",
        "shop_domain": "streamer-shop.myshopify.com",
        "shop_admin_token": "shpat_test",
        "plan": "creator",
        "global_cooldown_seconds": 0,
        "max_per_viewer_per_stream": 1,
    }
    values.update(overrides)
    async with SessionLocal() as session:
        session.add(Owner(**values))
        await session.commit()


async def _claim_all(SessionLocal: async_sessionmaker, engine: DropIssuanceEngine, claimants: list[Claimant]) -> list:
    async def claim(claimant: Claimant):
        async with SessionLocal() as session:
            return await engine.issue_viewer_drop(session, "streamer", claimant)

    return await asyncio.gather(*(claim(claimant) for claimant in claimants))


def _outcome(result: object) -> str:
    if isinstance(result, DropRejected):
        return f"rejected:{result.reason.value}"
    if isinstance(result, DropFailed):
        return f"failed:{result.cause.value}"
    return type(result).__name__


def _outcomes(results: list) -> Counter:
    return Counter(_outcome(result) for result in results)


async def _count_where(SessionLocal: async_sessionmaker, model: type, *criteria) -> int:
    async with SessionLocal() as session:
        query = select(func.count()).select_from(model)
        if criteria:
            query = query.where(*criteria)
        return int((await session.execute(query)).scalar_one())


@pytest.mark.anyio("asyncio")
async def test_concurrent_claims_from_one_viewer_issue_exactly_one_drop(tmp_path: Path) -> None:
    SessionLocal = await _file_backed_sessions(tmp_path)
    await _seed_owner(SessionLocal)

    commerce = SlowCommerce()
    engine = DropIssuanceEngine(commerce=commerce, clock=lambda: NOW)
    claimant = Claimant(viewer_id="v-1", viewer_login="someviewer")

    results = await _claim_all(SessionLocal, engine, [claimant] * 8)

    completed = [result for result in results if isinstance(result, DropCompleted)]
    rejected = [result for result in results if isinstance(result, DropRejected)]
    assert len(completed) == 1
    assert len(rejected) == 7
    assert Counter(result.reason for result in rejected) == {RejectionReason.cap_reached: 7}
    assert commerce.rules == 1

    assert await _count_where(SessionLocal, Drop) == 1
    assert await _count_where(SessionLocal, DropReservation, DropReservation.status == DropReservationStatus.committed) == 1


@pytest.mark.anyio("asyncio")
@pytest.mark.parametrize("plan", ["creator", "uncapped"])
async def test_same_viewer_race_is_closed_on_every_round(tmp_path: Path, plan: str) -> None:
    # "uncapped" has no monthly limit, so only the claimant sequence guards the cap.
    quota = QuotaLedger(
        PlanLimits(
            tiers={"creator": TierLimits(3000, None), "uncapped": TierLimits(None, None)},
            fallback_tier="creator",
        ),
        tz_name="UTC",
    )
    for round_index in range(10):
        SessionLocal = await _file_backed_sessions(tmp_path, f"round-{round_index}.db")
        await _seed_owner(SessionLocal, plan=plan)
        engine = DropIssuanceEngine(commerce=SlowCommerce(), quota=quota, clock=lambda: NOW)

        results = await _claim_all(SessionLocal, engine, [Claimant(viewer_id="v-1", viewer_login="someviewer")] * 8)

        assert _outcomes(results) == {"DropCompleted": 1, "rejected:cap_reached": 7}, round_index


@pytest.mark.anyio("asyncio")
async def test_concurrent_claims_from_many_viewers_respect_cooldown(tmp_path: Path) -> None:
    for round_index in range(5):
        SessionLocal = await _file_backed_sessions(tmp_path, f"cooldown-{round_index}.db")
        await _seed_owner(SessionLocal, plan="pro", global_cooldown_seconds=120)
        engine = DropIssuanceEngine(commerce=SlowCommerce(), clock=lambda: NOW)
        claimants = [Claimant(viewer_id=f"v-{index}", viewer_login=f"viewer{index}") for index in range(10)]

        results = await _claim_all(SessionLocal, engine, claimants)

        completed = [result for result in results if isinstance(result, DropCompleted)]
        rejected = [result for result in results if isinstance(result, DropRejected)]
        assert len(completed) == 1, round_index
        assert {result.reason for result in rejected} == {RejectionReason.cooldown}
        assert all(result.retry_after_seconds == 120 for result in rejected)
        assert await _count_where(SessionLocal, Drop) == 1


@pytest.mark.anyio("asyncio")
async def test_concurrent_claims_respect_monthly_quota(tmp_path: Path) -> None:
    SessionLocal = await _file_backed_sessions(tmp_path)
    await _seed_owner(SessionLocal, plan="free", max_per_viewer_per_stream=0)
    engine = DropIssuanceEngine(commerce=SlowCommerce(), clock=lambda: NOW)
    claimants = [Claimant(viewer_id=f"v-{index}", viewer_login=f"viewer{index}") for index in range(6)]

    results = await _claim_all(SessionLocal, engine, claimants)

    assert sum(isinstance(result, DropCompleted) for result in results) == 1
    reasons = {result.reason for result in results if isinstance(result, DropRejected)}
    assert reasons == {RejectionReason.quota_exceeded}


@pytest.mark.anyio("asyncio")
async def test_burst_of_distinct_viewers_under_quota_all_complete(tmp_path: Path) -> None:
    # Default attempt budget: owner-wide admissions wait on the owner lock rather than failing.
    SessionLocal = await _file_backed_sessions(tmp_path)
    await _seed_owner(SessionLocal, plan="creator")
    engine = DropIssuanceEngine(commerce=SlowCommerce(), clock=lambda: NOW)
    claimants = [Claimant(viewer_id=f"v-{index}", viewer_login=f"viewer{index}") for index in range(60)]

    results = await _claim_all(SessionLocal, engine, claimants)

    assert _outcomes(results) == {"DropCompleted": 60}
    assert not any(isinstance(result, DropFailed) for result in results)
    assert await _count_where(SessionLocal, Drop) == 60
    assert "drops_failed.admission_contention" not in metrics.snapshot()


@pytest.mark.anyio("asyncio")
async def test_burst_without_owner_wide_policy_skips_owner_sequence(tmp_path: Path) -> None:
    SessionLocal = await _file_backed_sessions(tmp_path)
    await _seed_owner(SessionLocal, plan="uncapped")
    quota = QuotaLedger(PlanLimits(tiers={"uncapped": TierLimits(None, None)}, fallback_tier="uncapped"))
    engine = DropIssuanceEngine(commerce=SlowCommerce(), quota=quota, clock=lambda: NOW)
    claimants = [Claimant(viewer_id=f"v-{index}", viewer_login=f"viewer{index}") for index in range(40)]

    results = await _claim_all(SessionLocal, engine, claimants)

    assert _outcomes(results) == {"DropCompleted": 40}
    assert await _count_where(SessionLocal, DropReservation, DropReservation.owner_seq.is_not(None)) == 0
    assert metrics.snapshot().get("admission_conflicts", 0) == 0
