"""
Marketplace configuration dependency.

Loaded per request from the settings store so operator changes apply
without a restart.
"""
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from pharmadispatch.core.config import MarketplaceConfig
from pharmadispatch.db.database import get_db
from pharmadispatch.domain.services.settings_service import SettingsService


async def get_marketplace_config(db: AsyncSession = Depends(get_db)) -> MarketplaceConfig:
    return await SettingsService(db).load_config()
