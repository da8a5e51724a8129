"""
Outbox Service - Transactional Outbox Pattern for courier notifications

Messages are written in the same transaction as the state change they
announce; a Celery beat task delivers them to the push gateway.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_

from pharmadispatch.core.config import settings
from pharmadispatch.db.models.courier import Courier
from pharmadispatch.db.models.delivery import Delivery
from pharmadispatch.db.models.outbox_message import OutboxMessage, MessageChannel, MessageStatus


def _calculate_backoff_seconds(
    retry_count: int,
    *,
    base_seconds: int,
    max_backoff_seconds: int,
) -> int:
    """
    Exponential backoff ``base_seconds * 2 ** retry_count`` capped at
    ``max_backoff_seconds``, without computing huge powers for large counts.
    """
    if retry_count < 0:
        retry_count = 0

    if base_seconds <= 0 or max_backoff_seconds <= 0:
        return 0

    if base_seconds >= max_backoff_seconds:
        return max_backoff_seconds

    # Smallest retry_count whose multiplier reaches ceil(max / base)
    required_multiplier = (max_backoff_seconds + base_seconds - 1) // base_seconds
    threshold = (required_multiplier - 1).bit_length()

    if retry_count >= threshold:
        return max_backoff_seconds

    return min(base_seconds * (1 << retry_count), max_backoff_seconds)


class OutboxService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def queue_message(
        self,
        recipient_type: str,
        recipient_id: str,
        message_type: str,
        message_content: dict,
        channel: MessageChannel = MessageChannel.PUSH,
    ) -> OutboxMessage:
        """Stage a message in the current transaction; the caller commits"""
        message = OutboxMessage(
            channel=channel,
            recipient_type=recipient_type,
            recipient_id=str(recipient_id),
            message_type=message_type,
            message_content=message_content,
            status=MessageStatus.PENDING,
            retry_count=0,
            max_retries=settings.OUTBOX_MAX_RETRIES,
        )
        self.db.add(message)
        return message

    async def queue_assignment_notification(
        self,
        delivery: Delivery,
        courier: Courier,
        score: Optional[float] = None,
        distance_km: Optional[float] = None,
    ) -> OutboxMessage:
        """Tell the chosen courier a delivery is waiting for them"""
        content = {
            "delivery_id": delivery.id,
            "order_id": delivery.order_id,
            "pickup_address": delivery.pickup_address,
            "dropoff_address": delivery.dropoff_address,
            "delivery_fee": str(delivery.delivery_fee) if delivery.delivery_fee is not None else None,
            "distance_km": round(distance_km, 2) if distance_km is not None else None,
            "score": score,
            "title": "New delivery assigned",
            "body": f"Delivery #{delivery.id} is waiting for you",
        }
        return await self.queue_message(
            recipient_type="courier",
            recipient_id=str(courier.id),
            message_type="delivery_assigned",
            message_content=content,
        )

    async def get_pending_messages(self, limit: int = 100) -> List[OutboxMessage]:
        """Pending messages whose retry delay has elapsed, oldest first"""
        now = datetime.utcnow()
        result = await self.db.execute(
            select(OutboxMessage)
            .where(
                OutboxMessage.status == MessageStatus.PENDING,
                or_(OutboxMessage.next_retry_at.is_(None), OutboxMessage.next_retry_at <= now),
            )
            .order_by(OutboxMessage.created_at, OutboxMessage.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def _get(self, message_id: int) -> Optional[OutboxMessage]:
        result = await self.db.execute(
            select(OutboxMessage).where(OutboxMessage.id == message_id)
        )
        return result.scalar_one_or_none()

    async def mark_as_processing(self, message_id: int) -> None:
        message = await self._get(message_id)
        if message:
            message.status = MessageStatus.PROCESSING
            await self.db.commit()

    async def mark_as_sent(self, message_id: int) -> None:
        message = await self._get(message_id)
        if message:
            message.status = MessageStatus.SENT
            message.processed_at = datetime.utcnow()
            await self.db.commit()

    async def mark_as_failed(self, message_id: int, error: str) -> None:
        """Back to PENDING with a backoff delay, or FAILED once retries run out"""
        message = await self._get(message_id)
        if not message:
            return

        message.retry_count = (message.retry_count or 0) + 1
        message.last_error = error[:1000]

        if message.retry_count >= message.max_retries:
            message.status = MessageStatus.FAILED
            message.processed_at = datetime.utcnow()
        else:
            message.status = MessageStatus.PENDING
            backoff_seconds = _calculate_backoff_seconds(
                message.retry_count,
                base_seconds=settings.OUTBOX_RETRY_BASE_SECONDS,
                max_backoff_seconds=settings.OUTBOX_RETRY_MAX_SECONDS,
            )
            message.next_retry_at = datetime.utcnow() + timedelta(seconds=backoff_seconds)

        await self.db.commit()
