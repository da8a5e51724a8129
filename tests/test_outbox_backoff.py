from datetime import datetime, timedelta

import pytest

from pharmadispatch.core.config import settings
from pharmadispatch.db.models.outbox_message import MessageChannel, MessageStatus, OutboxMessage
from pharmadispatch.domain.services.outbox_service import OutboxService, _calculate_backoff_seconds


def test_calculate_backoff_seconds_doubles() -> None:
    base = 30
    max_backoff = 3600

    assert _calculate_backoff_seconds(0, base_seconds=base, max_backoff_seconds=max_backoff) == 30
    assert _calculate_backoff_seconds(1, base_seconds=base, max_backoff_seconds=max_backoff) == 60
    assert _calculate_backoff_seconds(6, base_seconds=base, max_backoff_seconds=max_backoff) == 1920


def test_calculate_backoff_seconds_is_capped() -> None:
    base = 30
    max_backoff = 3600

    # 30 * 2**7 = 3840 -> capped to 3600
    assert _calculate_backoff_seconds(7, base_seconds=base, max_backoff_seconds=max_backoff) == 3600
    assert _calculate_backoff_seconds(10_000, base_seconds=base, max_backoff_seconds=max_backoff) == 3600


def test_calculate_backoff_seconds_degenerate_inputs() -> None:
    assert _calculate_backoff_seconds(-3, base_seconds=30, max_backoff_seconds=3600) == 30
    assert _calculate_backoff_seconds(2, base_seconds=0, max_backoff_seconds=3600) == 0
    assert _calculate_backoff_seconds(2, base_seconds=5000, max_backoff_seconds=3600) == 3600


async def _insert(db_session, **kwargs) -> OutboxMessage:
    msg = OutboxMessage(
        channel=MessageChannel.PUSH,
        recipient_type="courier",
        recipient_id="1",
        message_type="delivery_assigned",
        message_content={"delivery_id": 1},
        status=MessageStatus.PENDING,
        **kwargs,
    )
    db_session.add(msg)
    await db_session.commit()
    await db_session.refresh(msg)
    return msg


@pytest.mark.asyncio
async def test_mark_as_failed_sets_next_retry_at_with_cap(db_session) -> None:
    # A huge retry_count must not compute 2**retry_count
    msg = await _insert(db_session, retry_count=10_000, max_retries=20_000)

    svc = OutboxService(db_session)
    before = datetime.utcnow()
    await svc.mark_as_failed(msg.id, "boom")
    after = datetime.utcnow()

    await db_session.refresh(msg)
    assert msg.status == MessageStatus.PENDING
    assert msg.last_error == "boom"
    assert msg.next_retry_at is not None

    max_backoff = settings.OUTBOX_RETRY_MAX_SECONDS
    lower = before + timedelta(seconds=max_backoff) - timedelta(seconds=2)
    upper = after + timedelta(seconds=max_backoff) + timedelta(seconds=2)
    assert lower <= msg.next_retry_at <= upper


@pytest.mark.asyncio
async def test_mark_as_failed_gives_up_after_max_retries(db_session) -> None:
    msg = await _insert(db_session, retry_count=4, max_retries=5)

    await OutboxService(db_session).mark_as_failed(msg.id, "gateway down")

    await db_session.refresh(msg)
    assert msg.status == MessageStatus.FAILED
    assert msg.retry_count == 5
    assert msg.processed_at is not None


@pytest.mark.asyncio
async def test_pending_messages_respect_retry_delay(db_session) -> None:
    ready = await _insert(db_session)
    await _insert(db_session, next_retry_at=datetime.utcnow() + timedelta(minutes=5))
    sent = await _insert(db_session)
    await OutboxService(db_session).mark_as_sent(sent.id)

    pending = await OutboxService(db_session).get_pending_messages()

    assert [m.id for m in pending] == [ready.id]
