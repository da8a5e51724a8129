"""
Celery Tasks

Worker side of the transactional outbox (courier notifications through the
push gateway) and the scheduled bulk assignment of pending deliveries.
"""
from __future__ import annotations

import asyncio
from contextlib import contextmanager
from datetime import datetime, timedelta

from sqlalchemy import select, delete

from pharmadispatch.workers.celery_app import celery_app
from pharmadispatch.db.database import get_task_session
from pharmadispatch.db.models.outbox_message import OutboxMessage, MessageStatus
from pharmadispatch.domain.services.dispatch_service import DispatchService
from pharmadispatch.domain.services.outbox_service import OutboxService
from pharmadispatch.domain.services.push_gateway import PushGatewayClient
from pharmadispatch.domain.services.settings_service import SettingsService
from pharmadispatch.core.exceptions import AppException
from pharmadispatch.core.logging import get_logger, log_context, set_correlation_id

logger = get_logger(__name__)

_EMPTY_ASSIGNMENT_SUMMARY = {"total": 0, "assigned": 0, "no_courier": 0, "not_eligible": 0, "errors": 0}


@contextmanager
def get_event_loop():
    """
    A private event loop for one task run. Leftover tasks are cancelled and
    async generators closed before the loop is.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        try:
            leftovers = asyncio.all_tasks(loop)
            for task in leftovers:
                task.cancel()
            if leftovers:
                loop.run_until_complete(asyncio.gather(*leftovers, return_exceptions=True))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def run_async(coro):
    """Run a coroutine to completion from a synchronous Celery task"""
    set_correlation_id()

    with get_event_loop() as loop:
        return loop.run_until_complete(coro)


async def _process_single_message(message_id: int, client: PushGatewayClient) -> tuple[bool, str]:
    """Push one outbox message; failures go back to the outbox with a retry delay"""
    with log_context(message_id=message_id):
        async with get_task_session() as db:
            outbox = OutboxService(db)
            message = (
                await db.execute(select(OutboxMessage).where(OutboxMessage.id == message_id))
            ).scalar_one_or_none()
            if message is None or message.status != MessageStatus.PENDING:
                return False, "Message not pending"

            await outbox.mark_as_processing(message.id)

            try:
                await client.send(
                    channel=message.channel.value,
                    recipient_type=message.recipient_type,
                    recipient_id=message.recipient_id,
                    message_type=message.message_type,
                    content=message.message_content,
                )
            except AppException as e:
                logger.warning(
                    "Push notification failed",
                    extra_data={
                        "message_type": message.message_type,
                        "recipient_id": message.recipient_id,
                        "retry_count": message.retry_count,
                        "error": e.message,
                    }
                )
                await outbox.mark_as_failed(message.id, e.message)
                return False, e.message

            await outbox.mark_as_sent(message.id)
            return True, "Message sent successfully"


@celery_app.task(name="pharmadispatch.workers.tasks.process_outbox_messages")
def process_outbox_messages(limit: int = 50):
    """Push every pending outbox message whose retry delay has elapsed"""

    async def _drain():
        with log_context(task="process_outbox_messages"):
            async with get_task_session() as db:
                message_ids = [m.id for m in await OutboxService(db).get_pending_messages(limit=limit)]

            if not message_ids:
                return []

            client = PushGatewayClient()
            results = []
            for message_id in message_ids:
                success, detail = await _process_single_message(message_id, client)
                results.append({"message_id": message_id, "success": success, "result": detail})

            logger.info(
                "Outbox drained",
                extra_data={"total": len(results), "sent": sum(1 for r in results if r["success"])}
            )
            return results

    return run_async(_drain())


@celery_app.task(name="pharmadispatch.workers.tasks.auto_assign_pending")
def auto_assign_pending(limit: int | None = None):
    """Scheduled bulk assignment; returns the per-outcome counts"""

    async def _assign():
        with log_context(task="auto_assign_pending"):
            async with get_task_session() as db:
                config = await SettingsService(db).load_config()
                dispatch = DispatchService(db, config)
                delivery_ids = await dispatch.pending_delivery_ids(limit=limit)
                if not delivery_ids:
                    return dict(_EMPTY_ASSIGNMENT_SUMMARY)

                summary = (await dispatch.bulk_assign(delivery_ids)).to_dict()
                summary.pop("details")
                return summary

    return run_async(_assign())


@celery_app.task(name="pharmadispatch.workers.tasks.cleanup_old_messages")
def cleanup_old_messages(days: int = 30):
    """Delete sent outbox messages processed more than ``days`` ago"""

    async def _cleanup():
        with log_context(task="cleanup_old_messages"):
            async with get_task_session() as db:
                cutoff = datetime.utcnow() - timedelta(days=days)
                result = await db.execute(
                    delete(OutboxMessage).where(
                        OutboxMessage.status == MessageStatus.SENT,
                        OutboxMessage.processed_at < cutoff,
                    )
                )
                await db.commit()
                logger.info(
                    "Old outbox messages deleted",
                    extra_data={"deleted": result.rowcount, "older_than_days": days},
                )
                return {"deleted": result.rowcount}

    return run_async(_cleanup())
