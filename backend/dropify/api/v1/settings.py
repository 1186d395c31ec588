from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from dropify.core.dependencies import get_owner_or_404
from dropify.db.session import get_session
from dropify.models.owner import Owner
from dropify.schemas.owner import OwnerSettingsRead, OwnerSettingsResponse, OwnerSettingsUpdate
from dropify.services import owners as owners_service

router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("/{login}", response_model=OwnerSettingsResponse)
async def get_settings(owner: Owner = Depends(get_owner_or_404)) -> OwnerSettingsResponse:
    return OwnerSettingsResponse(login=owner.login, settings=OwnerSettingsRead.model_validate(owner))


@router.patch("/{login}", response_model=OwnerSettingsResponse)
async def update_settings(
    payload: OwnerSettingsUpdate,
    owner: Owner = Depends(get_owner_or_404),
    session: AsyncSession = Depends(get_session),
) -> OwnerSettingsResponse:
    owner = await owners_service.update_settings(session, owner, payload)
    return OwnerSettingsResponse(login=owner.login, settings=OwnerSettingsRead.model_validate(owner))
