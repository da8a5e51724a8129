"""
Operator authentication for manual and bulk assignment, reassignment,
settings and withdrawal settlement.

    async def manual_assign(..., _: None = Depends(require_admin_api_key)): ...
"""
import secrets

from fastapi import Depends, Request
from fastapi.security import APIKeyHeader

from pharmadispatch.core.config import settings
from pharmadispatch.core.exceptions import OperatorAuthError
from pharmadispatch.core.logging import get_logger

logger = get_logger(__name__)

ADMIN_KEY_HEADER = "X-Admin-API-Key"

admin_key_header = APIKeyHeader(name=ADMIN_KEY_HEADER, auto_error=False)


async def require_admin_api_key(
    request: Request,
    api_key: str | None = Depends(admin_key_header),
) -> None:
    """401 without a key, 403 with a wrong one; everything is refused while no key is configured"""
    if not settings.ADMIN_API_KEY:
        logger.warning(
            "Operator call refused, ADMIN_API_KEY not configured",
            extra_data={"path": request.url.path}
        )
        raise OperatorAuthError("Operator endpoints are disabled")

    if not api_key:
        raise OperatorAuthError(f"{ADMIN_KEY_HEADER} header required", missing=True)

    if not secrets.compare_digest(api_key.encode(), settings.ADMIN_API_KEY.encode()):
        logger.warning(
            "Operator call refused, wrong API key",
            extra_data={"path": request.url.path}
        )
        raise OperatorAuthError("Invalid API key")
