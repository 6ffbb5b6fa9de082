"""
Withdrawal lifecycle handling module.

Handles approval collection, rejection, cancellation and two-factor
confirmation. None of these touch balances.
"""

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config.settings import Settings
from settlement.models.enums import AuditSeverity, WithdrawalStatus
from settlement.models.transitions import ensure_transition
from settlement.models.withdrawal import Withdrawal
from settlement.repositories.audit_event_repository import AuditEventRepository
from settlement.repositories.withdrawal_approval_repository import (
    WithdrawalApprovalRepository,
)
from settlement.repositories.withdrawal_repository import WithdrawalRepository
from settlement.services.base_service import BaseService, transaction
from settlement.services.events import EventDispatcher, EventName
from settlement.services.withdrawal.withdrawal_helpers import recompute_amounts
from settlement.utils.datetime_utils import utc_now
from settlement.utils.exceptions import InvalidTransition, NotFound


@dataclass
class ApprovalOutcome:
    """Result of one approve call."""

    withdrawal: Withdrawal
    added: bool
    approvals: int
    required: int
    quorum_reached: bool


class WithdrawalLifecycleHandler(BaseService):
    """Handles withdrawal lifecycle operations."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        events: EventDispatcher | None = None,
    ) -> None:
        super().__init__(session, settings, events)
        self.withdrawal_repo = WithdrawalRepository(session)
        self.approval_repo = WithdrawalApprovalRepository(session)
        self.audit_repo = AuditEventRepository(session)

    @transaction
    async def approve(
        self, withdrawal_id: int, admin_id: int, note: str | None = None
    ) -> ApprovalOutcome:
        """
        Record an admin approval.

        The approval row is unique per (withdrawal, admin), so a repeated
        call by the same admin adds nothing. When the count reaches the
        required approvals the withdrawal moves to approved through a
        conditional update; only one caller observes the crossing.

        Args:
            withdrawal_id: Withdrawal ID
            admin_id: Approving admin
            note: Optional comment

        Returns:
            ApprovalOutcome

        Raises:
            NotFound: Unknown withdrawal
            InvalidTransition: Withdrawal no longer accepts approvals
        """
        withdrawal = await self._get(withdrawal_id)

        if not withdrawal.can_be_approved:
            admins = await self.approval_repo.admin_ids_for(withdrawal_id)
            if admin_id in admins:
                return ApprovalOutcome(
                    withdrawal, False, len(admins),
                    withdrawal.required_approvals, False,
                )
            raise InvalidTransition(
                f"Withdrawal {withdrawal_id} cannot be approved",
                status=withdrawal.status,
            )

        added = await self.approval_repo.add_if_absent(
            withdrawal_id, admin_id, note
        )
        approvals = await self.approval_repo.count_for(withdrawal_id)
        required = withdrawal.required_approvals

        if not added:
            self.logger.info(
                f"Admin {admin_id} already approved withdrawal {withdrawal_id}",
                extra={"withdrawal_id": withdrawal_id, "admin_id": admin_id},
            )
            return ApprovalOutcome(withdrawal, False, approvals, required, False)

        await self.audit_repo.record(
            "withdrawal.approval_added",
            message=note,
            user_id=withdrawal.user_id,
            actor_id=admin_id,
            entity_type="withdrawal",
            entity_id=withdrawal_id,
            details={"approvals": approvals, "required": required},
        )
        self.emit(
            EventName.WITHDRAWAL_APPROVAL_ADDED,
            withdrawal_id=withdrawal_id,
            admin_id=admin_id,
            approvals=approvals,
            required=required,
        )

        quorum_reached = False
        if approvals >= required:
            ensure_transition("withdrawal", withdrawal.status, WithdrawalStatus.APPROVED)
            recompute_amounts(withdrawal, self.settings.money_scale)
            quorum_reached = await self.withdrawal_repo.compare_and_set_status(
                withdrawal_id,
                [WithdrawalStatus.PENDING, WithdrawalStatus.AWAITING_APPROVAL],
                WithdrawalStatus.APPROVED,
                approved_at=utc_now(),
            )
            if quorum_reached:
                withdrawal = await self.withdrawal_repo.reload(withdrawal_id)
                self.logger.info(
                    f"Withdrawal {withdrawal_id} approved ({approvals}/{required})",
                    extra={
                        "withdrawal_id": withdrawal_id,
                        "user_id": withdrawal.user_id,
                        "amount": str(withdrawal.amount),
                    },
                )
                self.emit(
                    EventName.WITHDRAWAL_APPROVED,
                    withdrawal_id=withdrawal_id,
                    user_id=withdrawal.user_id,
                    amount=str(withdrawal.amount),
                    approvals=approvals,
                )

        return ApprovalOutcome(
            withdrawal, True, approvals, required, quorum_reached
        )

    @transaction
    async def reject(
        self, withdrawal_id: int, admin_id: int, reason: str
    ) -> Withdrawal:
        """
        Reject a withdrawal that is still collecting approvals.

        Raises:
            NotFound: Unknown withdrawal
            InvalidTransition: Withdrawal was already approved or closed
        """
        withdrawal = await self._get(withdrawal_id)
        ensure_transition("withdrawal", withdrawal.status, WithdrawalStatus.REJECTED)
        recompute_amounts(withdrawal, self.settings.money_scale)

        changed = await self.withdrawal_repo.compare_and_set_status(
            withdrawal_id,
            [WithdrawalStatus.PENDING, WithdrawalStatus.AWAITING_APPROVAL],
            WithdrawalStatus.REJECTED,
            rejection_reason=reason,
            rejected_by_admin_id=admin_id,
        )
        if not changed:
            raise InvalidTransition(
                f"Withdrawal {withdrawal_id} changed status concurrently"
            )
        withdrawal = await self.withdrawal_repo.reload(withdrawal_id)

        await self.audit_repo.record(
            "withdrawal.rejected",
            message=reason,
            user_id=withdrawal.user_id,
            actor_id=admin_id,
            entity_type="withdrawal",
            entity_id=withdrawal_id,
            severity=AuditSeverity.WARNING,
            details={"amount": str(withdrawal.amount)},
        )
        self.emit(
            EventName.WITHDRAWAL_REJECTED,
            withdrawal_id=withdrawal_id,
            user_id=withdrawal.user_id,
            admin_id=admin_id,
            reason=reason,
        )
        self.logger.info(
            f"Withdrawal {withdrawal_id} rejected by admin {admin_id}",
            extra={"withdrawal_id": withdrawal_id, "reason": reason},
        )
        return withdrawal

    @transaction
    async def cancel(
        self, withdrawal_id: int, user_id: int | None = None
    ) -> Withdrawal:
        """
        Cancel a withdrawal before approval.

        Args:
            withdrawal_id: Withdrawal ID
            user_id: Owner check (None for operator cancellation)

        Raises:
            NotFound: Unknown withdrawal or not owned by ``user_id``
            InvalidTransition: Withdrawal was already approved or closed
        """
        withdrawal = await self._get(withdrawal_id)
        if user_id is not None and withdrawal.user_id != user_id:
            raise NotFound(
                f"Withdrawal {withdrawal_id} not found", user_id=user_id
            )
        ensure_transition("withdrawal", withdrawal.status, WithdrawalStatus.CANCELLED)
        recompute_amounts(withdrawal, self.settings.money_scale)

        changed = await self.withdrawal_repo.compare_and_set_status(
            withdrawal_id,
            [WithdrawalStatus.PENDING, WithdrawalStatus.AWAITING_APPROVAL],
            WithdrawalStatus.CANCELLED,
        )
        if not changed:
            raise InvalidTransition(
                f"Withdrawal {withdrawal_id} changed status concurrently"
            )
        withdrawal = await self.withdrawal_repo.reload(withdrawal_id)

        self.emit(
            EventName.WITHDRAWAL_CANCELLED,
            withdrawal_id=withdrawal_id,
            user_id=withdrawal.user_id,
        )
        return withdrawal

    @transaction
    async def mark_two_factor_verified(self, withdrawal_id: int) -> Withdrawal:
        """Record that the owner confirmed the request with a second factor."""
        withdrawal = await self._get(withdrawal_id)
        if not withdrawal.is_open:
            raise InvalidTransition(
                f"Withdrawal {withdrawal_id} is closed",
                status=withdrawal.status,
            )
        withdrawal.two_factor_verified = True
        recompute_amounts(withdrawal, self.settings.money_scale)
        await self.session.flush()
        return withdrawal

    async def _get(self, withdrawal_id: int) -> Withdrawal:
        withdrawal = await self.withdrawal_repo.get_for_update(withdrawal_id)
        if withdrawal is None:
            raise NotFound(
                f"Withdrawal {withdrawal_id} not found", withdrawal_id=withdrawal_id
            )
        return withdrawal
