from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from dropify.core.dependencies import get_owner_or_404
from dropify.db.session import get_session
from dropify.models.owner import Owner
from dropify.schemas.owner import (
    ChannelListResponse,
    ShopConnectionRead,
    ShopConnectionResponse,
    ShopConnectionUpdate,
)
from dropify.services import owners as owners_service

router = APIRouter(prefix="/owners", tags=["owners"])


@router.get("/channels", response_model=ChannelListResponse)
async def list_channels(session: AsyncSession = Depends(get_session)) -> ChannelListResponse:
    return ChannelListResponse(channels=await owners_service.list_channels(session))


@router.get("/active", response_model=ChannelListResponse)
async def list_active_channels(session: AsyncSession = Depends(get_session)) -> ChannelListResponse:
    return ChannelListResponse(channels=await owners_service.list_channels(session, active_only=True))


@router.patch("/{login}/shop", response_model=ShopConnectionResponse)
async def update_shop_connection(
    payload: ShopConnectionUpdate,
    owner: Owner = Depends(get_owner_or_404),
    session: AsyncSession = Depends(get_session),
) -> ShopConnectionResponse:
    owner = await owners_service.update_connection(session, owner, payload)
    return ShopConnectionResponse(
        owner=ShopConnectionRead(login=owner.login, shop_domain=owner.shop_domain, shop_connected=owner.shop_connected)
    )
