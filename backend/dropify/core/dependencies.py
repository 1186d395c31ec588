import hmac

from fastapi import Depends, Header, HTTPException, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from dropify.core.config import settings
from dropify.db.session import get_session
from dropify.models.owner import Owner
from dropify.services import owners as owners_service
from dropify.services.drops import DropIssuanceEngine


async def require_admin(x_admin_token: str | None = Header(default=None)) -> None:
    expected = settings.admin_token
    if not expected:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access is not configured")
    if not x_admin_token or not hmac.compare_digest(x_admin_token, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")


async def get_owner_or_404(
    login: str = Path(..., min_length=1, max_length=64),
    session: AsyncSession = Depends(get_session),
) -> Owner:
    owner = await owners_service.get_owner_by_login(session, login)
    if owner is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Owner not found")
    return owner


def get_drop_engine() -> DropIssuanceEngine:
    return DropIssuanceEngine()
