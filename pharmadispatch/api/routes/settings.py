"""
Settings API Routes - marketplace parameters (operator only)
"""
from typing import Any
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from pharmadispatch.api.dependencies.admin_auth import require_admin_api_key
from pharmadispatch.db.database import get_db
from pharmadispatch.domain.services.settings_service import SettingsService

router = APIRouter(dependencies=[Depends(require_admin_api_key)])


class SettingsUpdate(BaseModel):
    values: dict[str, Any]


@router.get("", summary="Effective marketplace configuration")
async def get_settings(db: AsyncSession = Depends(get_db)):
    config = await SettingsService(db).load_config()
    return config.model_dump()


@router.put(
    "",
    summary="Override marketplace parameters",
    description="Each key must be a known parameter; the resulting configuration is validated before saving.",
)
async def update_settings(update: SettingsUpdate, db: AsyncSession = Depends(get_db)):
    config = await SettingsService(db).set_values(update.values)
    return config.model_dump()
