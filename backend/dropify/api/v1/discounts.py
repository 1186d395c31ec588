from fastapi import APIRouter, Depends, Path, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from dropify.core.dependencies import get_drop_engine
from dropify.db.session import get_session
from dropify.schemas.drop import DropIssuedResponse, DropRejectedResponse, GlobalDropRequest, ViewerClaimRequest
from dropify.schemas.error import ErrorResponse
from dropify.services.drops import (
    Claimant,
    DropCompleted,
    DropFailed,
    DropInvalid,
    DropIssuanceEngine,
    DropRejected,
    DropResult,
    RejectionReason,
)

router = APIRouter(prefix="/discounts", tags=["discounts"])


def _error(status_code: int, detail: str, code: str) -> JSONResponse:
    payload = ErrorResponse(detail=detail, code=code)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload.model_dump()))


def _to_response(result: DropResult) -> DropIssuedResponse | DropRejectedResponse | JSONResponse:
    # Policy rejections stay 200 so chat bots can branch on `reason`.
    if isinstance(result, DropCompleted):
        return DropIssuedResponse(
            drop_id=result.drop_id,
            kind=result.kind,
            code=result.code,
            discount_type=result.discount_type,
            discount_value=result.discount_value,
            cooldown_seconds=result.cooldown_seconds,
            max_per_viewer_per_stream=result.max_per_viewer_per_stream,
        )
    if isinstance(result, DropRejected):
        if result.reason == RejectionReason.owner_not_found:
            return _error(status.HTTP_404_NOT_FOUND, "Owner not found", RejectionReason.owner_not_found.value)
        return DropRejectedResponse(
            reason=result.reason.value,
            retry_after_seconds=result.retry_after_seconds,
            used=result.used,
            limit=result.limit,
            plan=result.plan,
            max_per_viewer_per_stream=result.max_per_viewer_per_stream,
        )
    if isinstance(result, DropInvalid):
        return _error(status.HTTP_400_BAD_REQUEST, result.detail, "invalid_request")
    if isinstance(result, DropFailed):
        return _error(status.HTTP_502_BAD_GATEWAY, "Could not create discount code", "drop_failed")
    raise TypeError(f"Unexpected drop result: {result!r}")


@router.post("/{login}", response_model=DropIssuedResponse | DropRejectedResponse)
async def claim_viewer_drop(
    payload: ViewerClaimRequest,
    login: str = Path(..., min_length=1, max_length=64),
    session: AsyncSession = Depends(get_session),
    engine: DropIssuanceEngine = Depends(get_drop_engine),
):
    claimant = Claimant(
        viewer_id=payload.viewer_id,
        viewer_login=payload.viewer_login,
        viewer_display_name=payload.viewer_display_name,
    )
    return _to_response(await engine.issue_viewer_drop(session, login, claimant))


@router.post("/{login}/global", response_model=DropIssuedResponse | DropRejectedResponse)
async def create_global_drop(
    payload: GlobalDropRequest,
    login: str = Path(..., min_length=1, max_length=64),
    session: AsyncSession = Depends(get_session),
    engine: DropIssuanceEngine = Depends(get_drop_engine),
):
    return _to_response(await engine.issue_global_drop(session, login, payload.percent))
