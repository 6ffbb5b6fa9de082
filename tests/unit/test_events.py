"""
Unit tests for event dispatch and the post-commit outbox.

Tests cover:
- Subscription by name and wildcard
- Handler failures are isolated
- Events published only after commit, dropped on rollback
- Transaction decorator commits or rolls back
"""

from unittest.mock import AsyncMock

import pytest

from settlement.services.base_service import BaseService, transaction
from settlement.services.events import EngineEvent, EventDispatcher, EventName
from settlement.utils.exceptions import InvalidTransition


class TestEventDispatcher:
    """Test publish/subscribe."""

    @pytest.mark.asyncio
    async def test_named_subscriber(self):
        dispatcher = EventDispatcher()
        handler = AsyncMock()
        dispatcher.subscribe(EventName.DEPOSIT_CONFIRMED, handler)

        event = EngineEvent(EventName.DEPOSIT_CONFIRMED, {"deposit_id": 1})
        await dispatcher.publish(event)

        handler.assert_awaited_once_with(event)

    @pytest.mark.asyncio
    async def test_other_events_not_delivered(self):
        dispatcher = EventDispatcher()
        handler = AsyncMock()
        dispatcher.subscribe(EventName.DEPOSIT_CONFIRMED, handler)

        await dispatcher.publish(EngineEvent(EventName.WITHDRAWAL_CREATED))

        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_wildcard(self):
        dispatcher = EventDispatcher()
        handler = AsyncMock()
        dispatcher.subscribe("*", handler)

        await dispatcher.publish(EngineEvent(EventName.BONUS_DISTRIBUTED))
        await dispatcher.publish(EngineEvent(EventName.WITHDRAWAL_FAILED))

        assert handler.await_count == 2

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_others(self):
        dispatcher = EventDispatcher()
        broken = AsyncMock(side_effect=RuntimeError("sink down"))
        healthy = AsyncMock()
        dispatcher.subscribe(EventName.BONUS_FAILED, broken)
        dispatcher.subscribe(EventName.BONUS_FAILED, healthy)

        await dispatcher.publish(EngineEvent(EventName.BONUS_FAILED))

        healthy.assert_awaited_once()


class TestOutbox:
    """Test that services publish only committed work."""

    @pytest.mark.asyncio
    async def test_published_after_commit(self, mock_session):
        dispatcher = EventDispatcher()
        handler = AsyncMock()
        dispatcher.subscribe("*", handler)
        service = BaseService(mock_session, events=dispatcher)

        service.emit(EventName.DEPOSIT_CREATED, deposit_id=1, amount="500")
        handler.assert_not_awaited()

        await service.commit()

        mock_session.commit.assert_awaited_once()
        event = handler.await_args.args[0]
        assert event.name == "deposit.created"
        assert event.payload == {"deposit_id": 1, "amount": "500"}

    @pytest.mark.asyncio
    async def test_dropped_on_rollback(self, mock_session):
        dispatcher = EventDispatcher()
        handler = AsyncMock()
        dispatcher.subscribe("*", handler)
        service = BaseService(mock_session, events=dispatcher)

        service.emit(EventName.WITHDRAWAL_CREATED, withdrawal_id=1)
        await service.rollback()
        await service.commit()

        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_outbox_shared_per_session(self, mock_session):
        dispatcher = EventDispatcher()
        handler = AsyncMock()
        dispatcher.subscribe("*", handler)
        first = BaseService(mock_session, events=dispatcher)
        second = BaseService(mock_session, events=dispatcher)

        first.emit(EventName.DEPOSIT_CONFIRMED)
        await second.commit()

        handler.assert_awaited_once()


class _Approver(BaseService):
    @transaction
    async def approve(self, fail: bool = False) -> str:
        self.emit(EventName.WITHDRAWAL_APPROVED, withdrawal_id=1)
        if fail:
            raise InvalidTransition("already closed")
        return "approved"


class TestTransactionDecorator:
    """Test commit and rollback around decorated service methods."""

    @pytest.mark.asyncio
    async def test_commits_and_publishes_on_success(self, mock_session):
        dispatcher = EventDispatcher()
        handler = AsyncMock()
        dispatcher.subscribe("*", handler)

        result = await _Approver(mock_session, events=dispatcher).approve()

        assert result == "approved"
        mock_session.commit.assert_awaited_once()
        mock_session.rollback.assert_not_awaited()
        handler.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rolls_back_and_drops_events_on_error(self, mock_session):
        dispatcher = EventDispatcher()
        handler = AsyncMock()
        dispatcher.subscribe("*", handler)

        with pytest.raises(InvalidTransition):
            await _Approver(mock_session, events=dispatcher).approve(fail=True)

        mock_session.rollback.assert_awaited_once()
        mock_session.commit.assert_not_awaited()
        assert mock_session.info == {}
        handler.assert_not_awaited()
