"""Asset lookup, mint-receipt verification, and signed downloads."""

import uuid

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import FileResponse
from pydantic import BaseModel

from app.api.deps import Auth, Session
from app.core.errors import Forbidden
from app.core.security import generate_signed_url, validate_signed_url, verify_mint_receipt
from app.models.asset import Asset, AssetRead
from app.services.admission import ensure_member
from app.services.storage import asset_exists

router = APIRouter(prefix="/assets", tags=["assets"])


class SignedUrlResponse(BaseModel):
    url: str
    expires_in: int = 15 * 60


async def _get_visible_asset(asset_id: uuid.UUID, auth, session) -> Asset:
    asset = await session.get(Asset, asset_id)
    if asset is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Asset not found")
    try:
        await ensure_member(session, asset.tenant_id, auth.user_id)
    except Forbidden:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Asset not found") from None
    return asset


def _to_read(asset: Asset) -> AssetRead:
    read = AssetRead.model_validate(asset)
    read.mint_verified = verify_mint_receipt(
        str(asset.id), str(asset.job_id), asset.mint_receipt_sig
    )
    return read


@router.get("/{asset_id}", response_model=AssetRead)
async def get_asset(asset_id: uuid.UUID, auth: Auth, session: Session) -> AssetRead:
    """Asset metadata. ``mint_verified`` is recomputed, not stored."""
    asset = await _get_visible_asset(asset_id, auth, session)
    return _to_read(asset)


@router.get("/{asset_id}/url", response_model=SignedUrlResponse)
async def get_signed_url(
    asset_id: uuid.UUID,
    request: Request,
    auth: Auth,
    session: Session,
) -> SignedUrlResponse:
    asset = await _get_visible_asset(asset_id, auth, session)
    return SignedUrlResponse(url=generate_signed_url(str(asset.id), str(request.base_url)))


@router.get("/{asset_id}/file", include_in_schema=False)
async def download_asset(
    asset_id: uuid.UUID,
    token: str,
    expires: int,
    session: Session,
) -> FileResponse:
    """Serve asset bytes to holders of a valid, unexpired signed URL."""
    if not validate_signed_url(str(asset_id), token, expires):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid or expired link")

    asset = await session.get(Asset, asset_id)
    if asset is None or not asset_exists(asset.storage_path):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Asset not found")
    return FileResponse(asset.storage_path, media_type=asset.mime_type)
