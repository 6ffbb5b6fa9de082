"""Integration tests for the withdrawal workflow: request, quorum, dispatch."""

from decimal import Decimal

import pytest
from sqlalchemy import func, select, update

from settlement.config.business_constants import SYSTEM_ADMIN_ID
from settlement.models.audit_event import AuditEvent
from settlement.models.transaction import Transaction
from settlement.models.user import User
from settlement.models.withdrawal import Withdrawal
from settlement.services.settlement_service import SettlementService
from settlement.utils.exceptions import ExternalDispatchFailed
from tests.helpers import OTHER_PAYOUT_ADDRESS, PAYOUT_ADDRESS, tx_hash
from tests.integration.fakes import FakePayoutDispatcher


async def approve_all(service, withdrawal_id, admins=(1, 2)):
    for admin_id in admins:
        result = await service.approve_withdrawal(withdrawal_id, admin_id)
        assert result.success, result.error
    return result


async def load_withdrawal(session, withdrawal_id):
    return await session.get(Withdrawal, withdrawal_id, populate_existing=True)


async def transactions_of(session, user_id, type=None):
    stmt = select(Transaction).where(Transaction.user_id == user_id)
    if type is not None:
        stmt = stmt.where(Transaction.type == type)
    stmt = stmt.order_by(Transaction.id).execution_options(populate_existing=True)
    return list((await session.execute(stmt)).scalars().all())


async def request(service, user_id, amount, address=PAYOUT_ADDRESS, **kwargs):
    result = await service.create_withdrawal(user_id, Decimal(amount), address, **kwargs)
    assert result.success, result.error
    return result.data.id


@pytest.fixture
def configured(session, settings, events):
    """Facade built with overridden settings."""

    def factory(**overrides):
        return SettlementService(session, settings.model_copy(update=overrides), events)

    return factory


class TestWithdrawalRequest:
    """Validation at request time."""

    @pytest.mark.asyncio
    async def test_insufficient_bonus_balance_creates_nothing(
        self, engine_service, session, make_user, fund
    ):
        """Withdrawing 200 from a bonus balance of 150 is refused outright."""
        user_id = (await make_user()).id
        await fund(user_id, "bonus", "150")

        result = await engine_service.create_withdrawal(
            user_id, Decimal("200"), PAYOUT_ADDRESS, source="bonus"
        )

        assert not result.success
        assert result.error_code == "insufficient_funds"
        count = (await session.execute(select(func.count(Withdrawal.id)))).scalar_one()
        assert count == 0
        assert len(await transactions_of(session, user_id)) == 1
        balances = (await engine_service.get_balances(user_id)).data
        assert balances["bonus"] == Decimal("150")
        audit = (await session.execute(
            select(AuditEvent).where(AuditEvent.event_type == "withdrawal.insufficient_funds")
        )).scalar_one()
        assert audit.details["requested"] == "200.00000000"

    @pytest.mark.asyncio
    async def test_created_awaiting_approval(
        self, engine_service, make_user, fund, recorder
    ):
        user_id = (await make_user()).id
        await fund(user_id, "bonus", "300")

        result = await engine_service.create_withdrawal(
            user_id, Decimal("100"), PAYOUT_ADDRESS
        )

        withdrawal = result.data
        assert withdrawal.status == "awaiting_approval"
        assert withdrawal.required_approvals == 2
        assert withdrawal.net_amount == Decimal("100")
        assert len(withdrawal.reference_id) <= 32
        # Nothing leaves the ledger before dispatch
        balances = (await engine_service.get_balances(user_id)).data
        assert balances["bonus"] == Decimal("300")
        assert "withdrawal.created" in recorder.names()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "amount,address,source",
        [
            (Decimal("5"), PAYOUT_ADDRESS, "bonus"),
            (Decimal("-10"), PAYOUT_ADDRESS, "bonus"),
            ("abc", PAYOUT_ADDRESS, "bonus"),
            (Decimal("50"), "0x1234", "bonus"),
            (Decimal("50"), PAYOUT_ADDRESS, "savings"),
        ],
    )
    async def test_invalid_requests(
        self, engine_service, make_user, fund, amount, address, source
    ):
        user_id = (await make_user()).id
        await fund(user_id, "bonus", "300")

        result = await engine_service.create_withdrawal(
            user_id, amount, address, source=source
        )

        assert not result.success
        assert result.error_code == "invalid_amount"

    @pytest.mark.asyncio
    async def test_unknown_user(self, engine_service):
        result = await engine_service.create_withdrawal(
            999, Decimal("50"), PAYOUT_ADDRESS
        )
        assert result.error_code == "not_found"

    @pytest.mark.asyncio
    async def test_deposit_bucket_locked(self, engine_service, make_user):
        user_id = (await make_user()).id
        await engine_service.create_deposit(
            user_id, tx_hash(100), Decimal("500"), confirmations=19
        )

        result = await engine_service.create_withdrawal(
            user_id, Decimal("100"), PAYOUT_ADDRESS, source="deposit"
        )

        assert not result.success
        assert result.error_code == "withdrawal_restricted"

    @pytest.mark.asyncio
    async def test_one_open_request_at_a_time(self, engine_service, make_user, fund):
        user_id = (await make_user()).id
        await fund(user_id, "bonus", "300")
        await request(engine_service, user_id, "50")

        result = await engine_service.create_withdrawal(
            user_id, Decimal("50"), PAYOUT_ADDRESS
        )

        assert result.error_code == "withdrawal_restricted"

    @pytest.mark.asyncio
    async def test_flagged_user_rejected_by_fraud_gate(
        self, engine_service, session, make_user, fund
    ):
        user_id = (await make_user()).id
        await fund(user_id, "bonus", "300")
        await session.execute(
            update(User).where(User.id == user_id).values(is_flagged=True)
        )
        await session.commit()

        result = await engine_service.create_withdrawal(
            user_id, Decimal("50"), PAYOUT_ADDRESS
        )

        assert result.error_code == "fraud_rejected"
        count = (await session.execute(select(func.count(Withdrawal.id)))).scalar_one()
        assert count == 0


class TestApprovalQuorum:
    """Distinct admin approvals."""

    @pytest.mark.asyncio
    async def test_two_admins_reach_quorum(
        self, engine_service, make_user, fund, recorder
    ):
        user_id = (await make_user()).id
        await fund(user_id, "bonus", "300")
        withdrawal_id = await request(engine_service, user_id, "100")

        first = await engine_service.approve_withdrawal(withdrawal_id, admin_id=1)
        assert first.success and first.data.added
        assert not first.data.quorum_reached
        assert first.data.withdrawal.status == "awaiting_approval"

        repeat = await engine_service.approve_withdrawal(withdrawal_id, admin_id=1)
        assert repeat.success
        assert repeat.error_code == "approval_already_given"
        assert not repeat.data.added
        assert repeat.data.approvals == 1

        second = await engine_service.approve_withdrawal(withdrawal_id, admin_id=2)
        assert second.data.quorum_reached
        assert second.data.withdrawal.status == "approved"
        assert second.data.withdrawal.approved_at is not None

        late = await engine_service.approve_withdrawal(withdrawal_id, admin_id=3)
        assert not late.success
        assert late.error_code == "invalid_transition"

        late_repeat = await engine_service.approve_withdrawal(withdrawal_id, admin_id=2)
        assert late_repeat.success
        assert late_repeat.error_code == "approval_already_given"

        approvals = await engine_service.withdrawals.get_approvals(withdrawal_id)
        assert sorted(a.admin_id for a in approvals) == [1, 2]
        assert recorder.names().count("withdrawal.approval_added") == 2
        assert recorder.names().count("withdrawal.approved") == 1

    @pytest.mark.asyncio
    async def test_new_payout_address_needs_extra_approval(
        self, engine_service, make_user, fund, payout
    ):
        user_id = (await make_user()).id
        await fund(user_id, "bonus", "300")
        first_id = await request(engine_service, user_id, "50")
        await approve_all(engine_service, first_id)
        await engine_service.process_withdrawal(first_id, payout)

        second = (await engine_service.create_withdrawal(
            user_id, Decimal("50"), OTHER_PAYOUT_ADDRESS
        )).data

        assert second.requires_additional_verification
        assert second.required_approvals == 3
        assert "withdrawal_to_new_address" in second.extra_data["fraud_signals"]

    @pytest.mark.asyncio
    async def test_zero_quorum_needs_system_approval(
        self, configured, make_user, fund, payout
    ):
        service = configured(required_approvals=0)
        user_id = (await make_user()).id
        await fund(user_id, "bonus", "300")
        result = await service.create_withdrawal(user_id, Decimal("50"), PAYOUT_ADDRESS)
        withdrawal_id = result.data.id
        assert result.data.status == "pending"

        early = await service.process_withdrawal(withdrawal_id, payout)
        assert early.error_code == "quorum_not_reached"

        approved = await service.approve_withdrawal(withdrawal_id, SYSTEM_ADMIN_ID)
        assert approved.data.quorum_reached

        done = await service.process_withdrawal(withdrawal_id, payout)
        assert done.data.status == "completed"

    @pytest.mark.asyncio
    async def test_reject_and_cancel(self, engine_service, make_user, fund, recorder):
        user_id = (await make_user()).id
        other_id = (await make_user()).id
        await fund(user_id, "bonus", "300")
        withdrawal_id = await request(engine_service, user_id, "50")

        not_owner = await engine_service.cancel_withdrawal(withdrawal_id, other_id)
        assert not_owner.error_code == "not_found"

        rejected = await engine_service.reject_withdrawal(withdrawal_id, 1, "kyc mismatch")
        assert rejected.data.status == "rejected"
        assert rejected.data.rejection_reason == "kyc mismatch"
        assert rejected.data.rejected_by_admin_id == 1

        cancel = await engine_service.cancel_withdrawal(withdrawal_id, user_id)
        assert cancel.error_code == "invalid_transition"

        # A closed request frees the slot for a new one
        again_id = await request(engine_service, user_id, "50")
        cancelled = await engine_service.cancel_withdrawal(again_id, user_id)
        assert cancelled.data.status == "cancelled"
        assert "withdrawal.rejected" in recorder.names()
        assert "withdrawal.cancelled" in recorder.names()


class TestDispatch:
    """Debit, payout and compensation."""

    @pytest.mark.asyncio
    async def test_successful_payout_with_fee(
        self, configured, session, make_user, fund, payout, recorder
    ):
        service = configured(withdrawal_fee_percent=Decimal("2"))
        user_id = (await make_user()).id
        await fund(user_id, "bonus", "300")
        created = (await service.create_withdrawal(
            user_id, Decimal("100"), PAYOUT_ADDRESS
        )).data
        withdrawal_id, reference = created.id, created.reference_id
        assert created.fee == Decimal("2")
        await approve_all(service, withdrawal_id)

        result = await service.process_withdrawal(withdrawal_id, payout)

        assert result.success
        assert result.data.status == "completed"
        assert result.data.tx_hash == f"{1:064x}"
        assert result.data.dispatch_attempts == 1
        assert payout.calls == [(PAYOUT_ADDRESS, Decimal("98"), reference)]
        balances = (await service.get_balances(user_id)).data
        assert balances["bonus"] == Decimal("200")

        debits = await transactions_of(session, user_id, "withdrawal")
        assert len(debits) == 1
        assert debits[0].amount == Decimal("-100")
        assert debits[0].fee == Decimal("2")
        assert debits[0].withdrawal_id == withdrawal_id
        assert "withdrawal.completed" in recorder.names()
        assert (await service.verify_user_balances(user_id)).success

    @pytest.mark.asyncio
    async def test_retryable_failure_is_compensated_and_retried(
        self, engine_service, session, make_user, fund
    ):
        user_id = (await make_user()).id
        await fund(user_id, "bonus", "300")
        withdrawal_id = await request(engine_service, user_id, "100")
        await approve_all(engine_service, withdrawal_id)
        flaky = FakePayoutDispatcher(
            ExternalDispatchFailed("signer timeout", retryable=True)
        )

        result = await engine_service.process_withdrawal(withdrawal_id, flaky)

        assert not result.success
        assert result.error_code == "external_dispatch_failed"
        withdrawal = await load_withdrawal(session, withdrawal_id)
        assert withdrawal.status == "approved"
        assert withdrawal.failure_reason.startswith("dispatch_failed")
        balances = (await engine_service.get_balances(user_id)).data
        assert balances["bonus"] == Decimal("300")

        debit, = await transactions_of(session, user_id, "withdrawal")
        reversal, = await transactions_of(session, user_id, "reversal")
        assert debit.is_reversed
        assert debit.status == "reversed"
        assert reversal.related_transaction_id == debit.id
        assert reversal.amount == Decimal("100")

        retry = await engine_service.process_withdrawal(
            withdrawal_id, FakePayoutDispatcher()
        )
        assert retry.data.status == "completed"
        assert retry.data.dispatch_attempts == 2
        balances = (await engine_service.get_balances(user_id)).data
        assert balances["bonus"] == Decimal("200")
        assert (await engine_service.verify_user_balances(user_id)).success

    @pytest.mark.asyncio
    async def test_permanent_failure_fails_withdrawal(
        self, engine_service, session, make_user, fund, recorder
    ):
        user_id = (await make_user()).id
        await fund(user_id, "bonus", "300")
        withdrawal_id = await request(engine_service, user_id, "100")
        await approve_all(engine_service, withdrawal_id)

        result = await engine_service.process_withdrawal(
            withdrawal_id,
            FakePayoutDispatcher(ExternalDispatchFailed("address blacklisted")),
        )

        assert result.error_code == "external_dispatch_failed"
        withdrawal = await load_withdrawal(session, withdrawal_id)
        assert withdrawal.status == "failed"
        balances = (await engine_service.get_balances(user_id)).data
        assert balances["bonus"] == Decimal("300")
        assert "withdrawal.failed" in recorder.names()

    @pytest.mark.asyncio
    async def test_second_withdrawal_cannot_overdraw(
        self, configured, session, make_user, fund, payout
    ):
        """Two 60 withdrawals against 100: the second fails at dispatch."""
        service = configured(max_open_withdrawals=2)
        user_id = (await make_user()).id
        await fund(user_id, "bonus", "100")
        first_id = await request(service, user_id, "60")
        second_id = await request(service, user_id, "60")
        await approve_all(service, first_id)
        await approve_all(service, second_id)

        summary = await service.withdrawals.process_approved(payout)

        assert summary.completed == [first_id]
        assert summary.failed == [second_id]
        second = await load_withdrawal(session, second_id)
        assert second.status == "failed"
        assert second.failure_reason == "insufficient_funds"
        balances = (await service.get_balances(user_id)).data
        assert balances["bonus"] == Decimal("40")
        assert len(await transactions_of(session, user_id, "withdrawal")) == 1
        assert len(payout.calls) == 1

    @pytest.mark.asyncio
    async def test_mixed_source_drains_bonus_then_referral(
        self, engine_service, session, make_user, fund, payout
    ):
        user_id = (await make_user()).id
        await fund(user_id, "bonus", "50")
        await fund(user_id, "referral", "80")
        withdrawal_id = await request(engine_service, user_id, "100", source="mixed")
        await approve_all(engine_service, withdrawal_id)

        result = await engine_service.process_withdrawal(withdrawal_id, payout)

        assert result.data.status == "completed"
        balances = (await engine_service.get_balances(user_id)).data
        assert balances["bonus"] == Decimal("0")
        assert balances["referral"] == Decimal("30")
        debits = await transactions_of(session, user_id, "withdrawal")
        assert [(t.bucket, t.amount) for t in debits] == [
            ("bonus", Decimal("-50")),
            ("referral", Decimal("-50")),
        ]

    @pytest.mark.asyncio
    async def test_two_factor_required_above_threshold(
        self, configured, make_user, fund, payout
    ):
        service = configured(two_factor_threshold=Decimal("100"))
        user_id = (await make_user()).id
        await fund(user_id, "bonus", "300")
        created = (await service.create_withdrawal(
            user_id, Decimal("150"), PAYOUT_ADDRESS
        )).data
        withdrawal_id = created.id
        assert created.requires_two_factor
        await approve_all(service, withdrawal_id)

        blocked = await service.process_withdrawal(withdrawal_id, payout)
        assert blocked.error_code == "withdrawal_restricted"
        assert payout.calls == []

        await service.withdrawals.verify_two_factor(withdrawal_id)
        done = await service.process_withdrawal(withdrawal_id, payout)
        assert done.data.status == "completed"

    @pytest.mark.asyncio
    async def test_cannot_dispatch_before_quorum(
        self, engine_service, make_user, fund, payout
    ):
        user_id = (await make_user()).id
        await fund(user_id, "bonus", "300")
        withdrawal_id = await request(engine_service, user_id, "100")
        await engine_service.approve_withdrawal(withdrawal_id, 1)

        result = await engine_service.process_withdrawal(withdrawal_id, payout)

        assert result.error_code == "quorum_not_reached"
        assert payout.calls == []
