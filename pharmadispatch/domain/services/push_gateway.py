"""
Push Gateway client - external notification collaborator

This core decides that and whom to notify; the gateway owns how (push, SMS).
"""
from typing import Optional

import httpx

from pharmadispatch.core.config import settings
from pharmadispatch.core.exceptions import (
    ErrorCode,
    ExternalServiceException,
    PushGatewayError,
)
from pharmadispatch.core.logging import get_correlation_id, get_logger

logger = get_logger(__name__)


class PushGatewayClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = (base_url or settings.PUSH_GATEWAY_URL).rstrip("/")
        self.token = token if token is not None else settings.PUSH_GATEWAY_TOKEN
        self.timeout = timeout or settings.PUSH_GATEWAY_TIMEOUT_SECONDS

    def _headers(self) -> dict[str, str]:
        headers = {"X-Correlation-ID": get_correlation_id()}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def send(
        self,
        channel: str,
        recipient_type: str,
        recipient_id: str,
        message_type: str,
        content: dict,
    ) -> None:
        """POST one notification; raises on timeout or a non-2xx answer"""
        payload = {
            "channel": channel,
            "recipient": {"type": recipient_type, "id": recipient_id},
            "type": message_type,
            "content": content,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/notifications",
                    json=payload,
                    headers=self._headers(),
                )
        except httpx.TimeoutException as e:
            raise ExternalServiceException(
                service_name="push_gateway",
                message="Push gateway timed out",
                error_code=ErrorCode.EXTERNAL_SERVICE_TIMEOUT,
                details={"error": str(e)},
            ) from e
        except httpx.HTTPError as e:
            raise PushGatewayError(str(e)) from e

        if response.status_code >= 300:
            raise PushGatewayError.from_response("send_notification", response)

        logger.debug(
            "Notification sent",
            extra_data={
                "channel": channel,
                "recipient_type": recipient_type,
                "recipient_id": recipient_id,
                "message_type": message_type,
            }
        )
