"""
Settings Service - key-value store overlaid on MarketplaceConfig defaults
"""
from datetime import datetime
from typing import Any
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from pharmadispatch.core.config import MarketplaceConfig
from pharmadispatch.core.exceptions import ValidationException
from pharmadispatch.core.logging import get_logger
from pharmadispatch.db.database import commit_or_raise
from pharmadispatch.db.models.setting import Setting

logger = get_logger(__name__)

CONFIG_KEYS = frozenset(MarketplaceConfig.model_fields)


def _validation_details(error: ValidationError) -> list[dict[str, Any]]:
    return [
        {"field": ".".join(str(p) for p in e["loc"]), "message": e["msg"]}
        for e in error.errors()
    ]


class SettingsService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_raw_values(self) -> dict[str, str]:
        result = await self.db.execute(select(Setting))
        return {row.key: row.value for row in result.scalars().all() if row.value is not None}

    async def load_config(self) -> MarketplaceConfig:
        """
        Build the marketplace configuration from stored overrides.

        Stored strings are coerced by pydantic ("true", "2.5", "300").
        Unknown keys are skipped with a warning.
        """
        values = {}
        for key, value in (await self.get_raw_values()).items():
            if key not in CONFIG_KEYS:
                logger.warning("Ignoring unknown setting", extra_data={"key": key})
                continue
            values[key] = value

        try:
            return MarketplaceConfig(**values)
        except ValidationError as e:
            logger.error("Stored settings are invalid", extra_data={"errors": _validation_details(e)})
            raise ValidationException(
                "Stored marketplace settings are invalid",
                details={"errors": _validation_details(e)},
            )

    async def set_value(self, key: str, value: Any) -> MarketplaceConfig:
        """Upsert one setting after checking the resulting configuration is valid"""
        if key not in CONFIG_KEYS:
            raise ValidationException(f"Unknown setting: {key}", field="key")

        stored = str(value).lower() if isinstance(value, bool) else str(value)

        current = await self.get_raw_values()
        current = {k: v for k, v in current.items() if k in CONFIG_KEYS}
        current[key] = stored
        try:
            config = MarketplaceConfig(**current)
        except ValidationError as e:
            raise ValidationException(
                f"Invalid value for {key}: {value}",
                field=key,
                details={"errors": _validation_details(e)},
            )

        setting = await self.db.get(Setting, key)
        if setting:
            setting.value = stored
            setting.updated_at = datetime.utcnow()
        else:
            self.db.add(Setting(key=key, value=stored))
        await commit_or_raise(self.db, "set_setting")

        logger.info("Setting updated", extra_data={"key": key, "value": stored})
        return config

    async def set_values(self, values: dict[str, Any]) -> MarketplaceConfig:
        config = None
        for key, value in values.items():
            config = await self.set_value(key, value)
        return config or await self.load_config()
