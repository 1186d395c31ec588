import asyncio
import re
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from dropify.core.config import settings
from dropify.core.dependencies import get_drop_engine
from dropify.db.base import Base
from dropify.db.session import get_session
from dropify.main import app
from dropify.models.drop import Drop, DropReservation, DropReservationStatus
from dropify.services.commerce import DiscountCodeError, PricingRuleSpec, ShopConnection
from dropify.services.drops import DropIssuanceEngine
from dropify.services.owners import register_owner


class FakeCommerce:
    def __init__(self) -> None:
        self.fail_code = False
        self.rules = 0

    async def create_pricing_rule(self, connection: ShopConnection, spec: PricingRuleSpec) -> str:
        self.rules += 1
        return str(self.rules)

    async def attach_discount_code(self, connection: ShopConnection, rule_id: str, code: str) -> str:
        if self.fail_code:
            raise DiscountCodeError("duplicate code", rule_id=rule_id)
        return f"dc-{rule_id}"


def make_test_client() -> tuple[TestClient, async_sessionmaker, FakeCommerce]:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    SessionLocal = async_sessionmaker(engine, expire_on_commit=False)

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())

    async def override_get_session():
        async with SessionLocal() as session:
            yield session

    commerce = FakeCommerce()
    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_drop_engine] = lambda: DropIssuanceEngine(commerce=commerce)
    return TestClient(app), SessionLocal, commerce


def seed_owner(SessionLocal: async_sessionmaker, *, login: str = "streamer", plan: str = "pro", connect: bool = True) -> None:
    async def _seed() -> None:
        async with SessionLocal() as session:
            owner = await register_owner(session, login=login, display_name=login.title(), plan=plan)
            if connect:
                owner.shop_domain = f"{login}.myshopify.com"
                owner.shop_admin_token = "shpat_test"
            owner.global_cooldown_seconds = 0
            await session.commit()

    asyncio.run(_seed())


@pytest.fixture
def api():
    client, SessionLocal, commerce = make_test_client()
    yield client, SessionLocal, commerce
    client.close()
    app.dependency_overrides.clear()


def test_viewer_claim_returns_code(api) -> None:
    client, SessionLocal, _ = api
    seed_owner(SessionLocal)

    res = client.post(
        "/api/v1/discounts/Streamer",
        json={"viewer_id": "123456", "viewer_login": "someviewer", "viewer_display_name": "SomeViewer"},
    )

    assert res.status_code == 200, res.text
    body = res.json()
    assert body["ok"] is True
    assert re.fullmatch(r"DROP-SOMEVIEWER-\d{4}", body["code"])
    assert body["kind"] == "viewer"
    assert body["discount_type"] == "percentage"
    assert Decimal(str(body["discount_value"])) == Decimal("10")

    again = client.post("/api/v1/discounts/streamer", json={"viewer_id": "123456", "viewer_login": "someviewer"})
    assert again.status_code == 200
    assert again.json()["ok"] is False
    assert again.json()["reason"] == "cap_reached"
    assert again.json()["max_per_viewer_per_stream"] == 1


def test_viewer_claim_validation_and_unknown_owner(api) -> None:
    client, SessionLocal, _ = api
    seed_owner(SessionLocal)

    missing_fields = client.post("/api/v1/discounts/streamer", json={"viewer_login": "someviewer"})
    assert missing_fields.status_code == 422
    assert missing_fields.json()["code"] == "validation_error"

    unknown = client.post("/api/v1/discounts/ghost", json={"viewer_id": "1", "viewer_login": "someviewer"})
    assert unknown.status_code == 404
    assert unknown.json() == {"detail": "Owner not found", "code": "owner_not_found"}


def test_viewer_claim_for_unconnected_owner_is_rejected(api) -> None:
    client, SessionLocal, commerce = api
    seed_owner(SessionLocal, connect=False)

    res = client.post("/api/v1/discounts/streamer", json={"viewer_id": "1", "viewer_login": "someviewer"})

    assert res.status_code == 200
    assert res.json()["reason"] == "owner_not_connected"
    assert commerce.rules == 0


def test_commerce_failure_maps_to_bad_gateway(api) -> None:
    client, SessionLocal, commerce = api
    seed_owner(SessionLocal)
    commerce.fail_code = True

    res = client.post("/api/v1/discounts/streamer", json={"viewer_id": "1", "viewer_login": "someviewer"})

    assert res.status_code == 502
    assert res.json() == {"detail": "Could not create discount code", "code": "drop_failed"}

    async def _drops() -> int:
        async with SessionLocal() as session:
            return int((await session.execute(select(func.count()).select_from(Drop))).scalar_one())

    assert asyncio.run(_drops()) == 0


def test_global_drop_percent_bounds_and_quota(api) -> None:
    client, SessionLocal, _ = api
    seed_owner(SessionLocal, login="freebie", plan="free")
    seed_owner(SessionLocal, login="pro", plan="pro")

    for percent in (0, 51, "10", True):
        res = client.post("/api/v1/discounts/pro/global", json={"percent": percent})
        assert res.status_code == 422, percent

    rejected = client.post("/api/v1/discounts/freebie/global", json={"percent": 10})
    assert rejected.status_code == 200
    assert rejected.json()["reason"] == "quota_exceeded"
    assert (rejected.json()["used"], rejected.json()["limit"], rejected.json()["plan"]) == (0, 0, "free")

    ok = client.post("/api/v1/discounts/pro/global", json={"percent": 25})
    assert ok.status_code == 200
    assert ok.json()["kind"] == "global"
    assert re.fullmatch(r"PRO25-\d{4}", ok.json()["code"])


def test_plan_usage_and_recent_drops(api) -> None:
    client, SessionLocal, _ = api
    seed_owner(SessionLocal)
    client.post("/api/v1/discounts/streamer", json={"viewer_id": "1", "viewer_login": "first"})
    client.post("/api/v1/discounts/streamer", json={"viewer_id": "2", "viewer_login": "second"})
    client.post("/api/v1/discounts/streamer/global", json={"percent": 15})

    plan = client.get("/api/v1/plan/streamer")
    assert plan.status_code == 200, plan.text
    body = plan.json()
    assert body["plan"] == "pro"
    assert body["limits"] == {"viewer_drops_per_month": 500, "global_drops_per_month": 30}
    assert body["usage"] == {"viewer_drops_this_month": 2, "global_drops_this_month": 1}
    assert body["period"]["month_start"] < body["period"]["month_end"]

    recent = client.get("/api/v1/drops/streamer/recent", params={"limit": 2})
    assert recent.status_code == 200
    drops = recent.json()["drops"]
    assert len(drops) == 2
    assert drops[0]["kind"] == "global"

    assert client.get("/api/v1/plan/ghost").status_code == 404


def test_settings_read_and_partial_update(api) -> None:
    client, SessionLocal, _ = api
    seed_owner(SessionLocal)

    current = client.get("/api/v1/settings/streamer")
    assert current.status_code == 200
    assert current.json()["settings"]["discount_prefix"] == "DROP-"

    res = client.patch(
        "/api/v1/settings/streamer",
        json={"discount_prefix": " vip- ", "max_per_viewer_per_stream": 3, "discount_type": "fixed_amount"},
    )
    assert res.status_code == 200, res.text
    updated = res.json()["settings"]
    assert updated["discount_prefix"] == "VIP-"
    assert updated["max_per_viewer_per_stream"] == 3
    assert updated["discount_type"] == "fixed_amount"
    assert updated["enabled"] is True

    assert client.patch("/api/v1/settings/streamer", json={"global_cooldown_seconds": -1}).status_code == 422
    assert client.patch("/api/v1/settings/streamer", json={"unknown_field": 1}).status_code == 422
    assert client.patch("/api/v1/settings/streamer", json={"discount_type": "bogo"}).status_code == 422

    claim = client.post("/api/v1/discounts/streamer", json={"viewer_id": "1", "viewer_login": "someviewer"})
    assert re.fullmatch(r"VIP-SOMEVIEWER-\d{4}", claim.json()["code"])
    assert claim.json()["discount_type"] == "fixed_amount"


def test_disabled_owner_rejects_viewer_claims(api) -> None:
    client, SessionLocal, _ = api
    seed_owner(SessionLocal)
    client.patch("/api/v1/settings/streamer", json={"enabled": False})

    res = client.post("/api/v1/discounts/streamer", json={"viewer_id": "1", "viewer_login": "someviewer"})
    assert res.json()["reason"] == "owner_disabled"


def test_shop_connection_update_and_clear(api) -> None:
    client, SessionLocal, _ = api
    seed_owner(SessionLocal, connect=False)

    res = client.patch(
        "/api/v1/owners/streamer/shop",
        json={"shop_domain": "https://Streamer-Shop.myshopify.com/", "shop_admin_token": "shpat_new"},
    )
    assert res.status_code == 200, res.text
    assert res.json()["owner"] == {
        "login": "streamer",
        "shop_domain": "streamer-shop.myshopify.com",
        "shop_connected": True,
    }
    assert "shpat_new" not in res.text

    cleared = client.patch("/api/v1/owners/streamer/shop", json={"shop_admin_token": ""})
    assert cleared.json()["owner"]["shop_connected"] is False

    bad_version = client.patch("/api/v1/owners/streamer/shop", json={"shop_api_version": "latest"})
    assert bad_version.status_code == 422


def test_admin_reset_requires_token_and_flag(api, monkeypatch: pytest.MonkeyPatch) -> None:
    client, SessionLocal, _ = api
    seed_owner(SessionLocal)
    client.post("/api/v1/discounts/streamer", json={"viewer_id": "1", "viewer_login": "first"})
    client.post("/api/v1/discounts/streamer/global", json={"percent": 10})

    monkeypatch.setattr(settings, "admin_token", "admin-secret")
    monkeypatch.setattr(settings, "allow_plan_reset", False)

    assert client.post("/api/v1/admin/plan/streamer/reset").status_code == 401
    assert (
        client.post("/api/v1/admin/plan/streamer/reset", headers={"X-Admin-Token": "wrong"}).status_code == 401
    )
    blocked = client.post("/api/v1/admin/plan/streamer/reset", headers={"X-Admin-Token": "admin-secret"})
    assert blocked.status_code == 403

    monkeypatch.setattr(settings, "allow_plan_reset", True)
    res = client.post(
        "/api/v1/admin/plan/streamer/reset", params={"kind": "viewer"}, headers={"X-Admin-Token": "admin-secret"}
    )
    assert res.status_code == 200, res.text
    assert res.json()["deleted"] == 1
    assert res.json()["kind"] == "viewer"

    usage = client.get("/api/v1/plan/streamer").json()["usage"]
    assert usage == {"viewer_drops_this_month": 0, "global_drops_this_month": 1}

    async def _slots() -> list[DropReservationStatus]:
        async with SessionLocal() as session:
            return list((await session.execute(select(DropReservation.status))).scalars().all())

    assert sorted(status.value for status in asyncio.run(_slots())) == ["committed", "released"]

    # Sequences keep growing after a reset.
    again = client.post("/api/v1/discounts/streamer", json={"viewer_id": "1", "viewer_login": "first"})
    assert again.json()["ok"] is True


def test_health_metrics_and_error_shape(api) -> None:
    client, SessionLocal, _ = api
    seed_owner(SessionLocal)
    client.post("/api/v1/discounts/streamer", json={"viewer_id": "1", "viewer_login": "first"})
    client.post("/api/v1/discounts/streamer", json={"viewer_id": "1", "viewer_login": "first"})

    assert client.get("/api/v1/health").json() == {"status": "ok"}
    snapshot = client.get("/api/v1/metrics").json()
    assert snapshot["drops_issued.viewer"] == 1
    assert snapshot["drops_rejected.cap_reached"] == 1

    missing = client.get("/api/v1/does-not-exist")
    assert missing.status_code == 404
    assert set(missing.json()) == {"detail", "code"}


def test_request_id_is_echoed_or_generated(api) -> None:
    client, _, _ = api
    echoed = client.get("/api/v1/health", headers={"X-Request-ID": "bot-trace-0001"})
    assert echoed.headers["X-Request-ID"] == "bot-trace-0001"

    generated = client.get("/api/v1/health", headers={"X-Request-ID": "bad id!"})
    assert generated.headers["X-Request-ID"] != "bad id!"
    assert generated.headers["X-Request-ID"]


def test_channel_lists_for_chat_bot(api) -> None:
    client, SessionLocal, _ = api
    seed_owner(SessionLocal, login="Zeta")
    seed_owner(SessionLocal, login="alpha", connect=False)
    seed_owner(SessionLocal, login="paused")
    client.patch("/api/v1/settings/paused", json={"enabled": False})

    channels = client.get("/api/v1/owners/channels")
    assert channels.status_code == 200
    assert channels.json() == {"ok": True, "channels": ["alpha", "paused", "zeta"]}

    active = client.get("/api/v1/owners/active")
    assert active.json() == {"ok": True, "channels": ["zeta"]}
