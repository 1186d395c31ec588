from fastapi import APIRouter, Depends

from dropify.api.v1 import admin
from dropify.api.v1 import discounts
from dropify.api.v1 import drops
from dropify.api.v1 import owners
from dropify.api.v1 import plan
from dropify.api.v1 import redemptions
from dropify.api.v1 import settings as settings_api
from dropify.api.v1 import webhooks
from dropify.core.config import settings
from dropify.core.metrics import snapshot as metrics_snapshot
from dropify.core.rate_limit import client_ip, per_identifier_limiter

api_rate_limit = per_identifier_limiter(client_ip, settings.api_rate_limit_per_minute, 60)

api_router = APIRouter()

# Webhooks and admin routes are not throttled per IP.
for public_router in (
    discounts.router,
    plan.router,
    drops.router,
    settings_api.router,
    owners.router,
    redemptions.router,
):
    api_router.include_router(public_router, dependencies=[Depends(api_rate_limit)])
api_router.include_router(webhooks.router)
api_router.include_router(admin.router)


@api_router.get("/health", tags=["health"])
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@api_router.get("/metrics", tags=["metrics"])
def metrics() -> dict:
    return metrics_snapshot()
