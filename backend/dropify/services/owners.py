from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dropify.models.owner import Owner
from dropify.schemas.owner import OwnerSettingsUpdate, ShopConnectionUpdate

logger = logging.getLogger(__name__)


def normalize_login(login: str | None) -> str:
    return (login or "").strip().lower()


async def get_owner_by_login(session: AsyncSession, login: str | None) -> Owner | None:
    cleaned = normalize_login(login)
    if not cleaned:
        return None
    return (await session.execute(select(Owner).where(Owner.login == cleaned))).scalar_one_or_none()


async def get_owner_by_shop_domain(session: AsyncSession, shop_domain: str | None) -> Owner | None:
    cleaned = (shop_domain or "").strip().lower()
    if not cleaned:
        return None
    return (await session.execute(select(Owner).where(Owner.shop_domain == cleaned).limit(1))).scalars().first()


async def register_owner(
    session: AsyncSession,
    *,
    login: str,
    twitch_id: str | None = None,
    display_name: str | None = None,
    plan: str | None = None,
) -> Owner:
    """Create the owner on first sign-in, or refresh its identity fields."""
    cleaned = normalize_login(login)
    if not cleaned:
        raise ValueError("login is required")

    owner = await get_owner_by_login(session, cleaned)
    if owner is None:
        owner = Owner(login=cleaned)
        session.add(owner)
    if twitch_id is not None:
        owner.twitch_id = twitch_id
    owner.display_name = display_name or owner.display_name or login
    if plan is not None:
        owner.plan = plan
    await session.commit()
    await session.refresh(owner)
    return owner


async def update_settings(session: AsyncSession, owner: Owner, payload: OwnerSettingsUpdate) -> Owner:
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    for field, value in changes.items():
        setattr(owner, field, value)
    session.add(owner)
    await session.commit()
    await session.refresh(owner)
    logger.info("owner_settings_updated", extra={"owner_login": owner.login, "fields": sorted(changes)})
    return owner


async def update_connection(session: AsyncSession, owner: Owner, payload: ShopConnectionUpdate) -> Owner:
    changes = payload.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(owner, field, value or None)
    session.add(owner)
    await session.commit()
    await session.refresh(owner)
    logger.info(
        "owner_shop_connection_updated",
        extra={"owner_login": owner.login, "shop_domain": owner.shop_domain, "shop_connected": owner.shop_connected},
    )
    return owner


async def list_channels(session: AsyncSession, *, active_only: bool = False) -> list[str]:
    """Lowercased owner logins for the chat bot to join.

    `active_only` keeps owners that can issue viewer drops right now: enabled and connected.
    """
    query = select(Owner.login)
    if active_only:
        query = query.where(
            Owner.enabled.is_(True),
            Owner.shop_domain.is_not(None),
            Owner.shop_domain != "",
            Owner.shop_admin_token.is_not(None),
            Owner.shop_admin_token != "",
        )
    rows = await session.execute(query.order_by(Owner.login))
    return [login.lower() for login in rows.scalars().all() if login]
