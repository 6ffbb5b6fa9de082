"""
Fraud gate.

Evaluation consulted synchronously by the deposit tracker and the
withdrawal workflow before any state mutation. Vetoes are returned as a
FraudDecision (the caller raises or rejects); every decision is written
as an audit event in the caller's unit of work.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config.business_constants import (
    DEPOSIT_PATTERN_WEIGHT,
    MAX_RISK_SCORE,
    RISK_LOOKBACK_DAYS,
    ROUND_TRIP_LOOKBACK_DAYS,
    WITHDRAWAL_PATTERN_WEIGHT,
    WITHDRAWAL_SIGNAL_WEIGHTS,
)
from settlement.config.settings import Settings
from settlement.models.deposit import Deposit
from settlement.models.enums import AuditSeverity
from settlement.models.user import User
from settlement.repositories.audit_event_repository import AuditEventRepository
from settlement.repositories.deposit_repository import DepositRepository
from settlement.repositories.user_repository import UserRepository
from settlement.repositories.withdrawal_repository import WithdrawalRepository
from settlement.services.base_service import BaseService
from settlement.services.events import EventDispatcher, EventName
from settlement.services.fraud.patterns import (
    detect_round_trip,
    detect_structuring,
    has_automated_pattern,
    is_suspicious_amount,
)
from settlement.utils.datetime_utils import utc_now
from settlement.utils.exceptions import NotFound


@dataclass
class FraudDecision:
    """Outcome of a deposit or withdrawal check."""

    allowed: bool
    rule: str | None = None
    reason: str | None = None
    signals: list[str] = field(default_factory=list)
    requires_additional_verification: bool = False
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class RiskAssessment:
    """Outcome of a user evaluation."""

    user_id: int
    risk_score: int
    activities: list[str]
    is_high_risk: bool
    should_block: bool


class FraudGate(BaseService):
    """Deposit/withdrawal vetoes and user risk scoring."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        events: EventDispatcher | None = None,
    ) -> None:
        super().__init__(session, settings, events)
        self.deposit_repo = DepositRepository(session)
        self.withdrawal_repo = WithdrawalRepository(session)
        self.user_repo = UserRepository(session)
        self.audit_repo = AuditEventRepository(session)

    async def check_deposit(self, deposit: Deposit, user: User) -> FraudDecision:
        """
        Check a newly observed deposit.

        Rejects flagged users, velocity overruns (hourly and daily) and a
        transaction hash already attached to another deposit. Amounts just
        below watched thresholds are recorded as a signal only.

        Args:
            deposit: Deposit in pending status (already flushed)
            user: Owner of the deposit

        Returns:
            FraudDecision
        """
        now = utc_now()
        details: dict[str, Any] = {
            "deposit_id": deposit.id,
            "amount": str(deposit.amount),
            "tx_hash": deposit.tx_hash,
        }

        decision = None
        if user.is_flagged:
            decision = FraudDecision(
                False, "user_flagged", "User is flagged for review"
            )

        if decision is None:
            for period, window, limit in (
                ("hourly", timedelta(hours=1), self.settings.deposit_velocity_hourly),
                ("daily", timedelta(hours=24), self.settings.deposit_velocity_daily),
            ):
                total = await self.deposit_repo.sum_since(
                    user.id, now - window, exclude_id=deposit.id
                )
                attempted = total + deposit.amount
                if attempted > limit:
                    details.update({
                        "period": period,
                        "limit": str(limit),
                        "attempted": str(attempted),
                    })
                    decision = FraudDecision(
                        False,
                        f"deposit_velocity_{period}",
                        f"Deposit {period} velocity limit exceeded",
                    )
                    break

        if decision is None:
            other = await self.deposit_repo.find_other_with_tx_hash(
                deposit.tx_hash, deposit.id
            )
            if other is not None:
                details["duplicate_of"] = other.id
                decision = FraudDecision(
                    False,
                    "duplicate_transaction",
                    "Transaction hash already attached to another deposit",
                )

        if decision is None:
            decision = FraudDecision(True)
            if is_suspicious_amount(deposit.amount):
                decision.signals.append("suspicious_amount")

        decision.details = details
        await self._audit("deposit", user.id, deposit.id, decision)
        return decision

    async def check_withdrawal(
        self, user: User, amount: Decimal, to_address: str
    ) -> FraudDecision:
        """
        Check a withdrawal request before it is created.

        Rejects flagged users and daily velocity overruns. Address reuse
        across users, a withdrawal shortly after a deposit, a new payout
        address and automated timing only raise the risk score; a score at
        or above the high-risk threshold flags the user for manual review
        without blocking this request.

        Args:
            user: Requesting user
            amount: Gross amount
            to_address: Payout address

        Returns:
            FraudDecision
        """
        now = utc_now()
        details: dict[str, Any] = {
            "amount": str(amount),
            "to_address": to_address,
        }

        if user.is_flagged:
            decision = FraudDecision(
                False, "user_flagged", "User is flagged for review",
                details=details,
            )
            await self._audit("withdrawal", user.id, None, decision)
            return decision

        daily_total = await self.withdrawal_repo.sum_since(
            user.id, now - timedelta(hours=24)
        )
        attempted = daily_total + amount
        limit = self.settings.withdrawal_velocity_daily
        if attempted > limit:
            details.update({
                "period": "daily",
                "limit": str(limit),
                "attempted": str(attempted),
            })
            decision = FraudDecision(
                False,
                "withdrawal_velocity_daily",
                "Withdrawal daily velocity limit exceeded",
                details=details,
            )
            await self._audit("withdrawal", user.id, None, decision)
            return decision

        decision = FraudDecision(True, details=details)

        latest = await self.withdrawal_repo.get_latest(user.id)
        if latest is not None and latest.to_address != to_address:
            decision.signals.append("withdrawal_to_new_address")
            decision.requires_additional_verification = True

        shared = await self.withdrawal_repo.count_other_users_for_address(
            to_address, user.id
        )
        if shared:
            decision.signals.append("shared_withdrawal_address")
            details["other_users"] = shared

        window = timedelta(hours=self.settings.quick_withdrawal_window_hours)
        if await self.deposit_repo.count_since(user.id, now - window):
            decision.signals.append("quick_withdrawal_after_deposit")

        recent = await self.withdrawal_repo.find_user_withdrawals_since(
            user.id, now - timedelta(days=RISK_LOOKBACK_DAYS)
        )
        if has_automated_pattern(recent):
            decision.signals.append("automated_withdrawal_pattern")

        if decision.signals:
            assessment = await self.evaluate_user(user.id, persist=False)
            score = min(
                MAX_RISK_SCORE,
                assessment.risk_score
                + sum(WITHDRAWAL_SIGNAL_WEIGHTS[s] for s in decision.signals),
            )
            details["risk_score"] = score
            await self._apply_score(user, score, decision.signals)

        await self._audit("withdrawal", user.id, None, decision)
        return decision

    async def evaluate_user(
        self, user_id: int, persist: bool = True
    ) -> RiskAssessment:
        """
        Score a user's recent deposit and withdrawal history.

        Args:
            user_id: User ID
            persist: Store the score and flag high-risk users

        Returns:
            RiskAssessment
        """
        user = await self.user_repo.get_by_id(user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found", user_id=user_id)

        now = utc_now()
        activities: list[str] = []

        deposits = await self.deposit_repo.find_user_deposits_since(
            user_id, now - timedelta(days=RISK_LOOKBACK_DAYS)
        )
        if len(deposits) >= 2:
            if detect_structuring(deposits):
                activities.append("deposit_structuring")

            since = now - timedelta(days=ROUND_TRIP_LOOKBACK_DAYS)
            recent_withdrawals = await self.withdrawal_repo.find_user_withdrawals_since(
                user_id, since
            )
            recent_deposits = [d for d in deposits if d.created_at >= since]
            if detect_round_trip(recent_deposits, recent_withdrawals):
                activities.append("round_trip_transactions")

            per_day = await self.deposit_repo.count_since(
                user_id, now - timedelta(hours=24)
            )
            if per_day > self.settings.max_deposits_per_day:
                activities.append("excessive_deposit_frequency")
        deposit_issues = len(activities)

        total_deposits = await self.deposit_repo.total_confirmed(user_id)
        if total_deposits > 0:
            total_withdrawals = await self.withdrawal_repo.total_completed(user_id)
            if total_withdrawals / total_deposits > self.settings.suspicious_withdrawal_ratio:
                activities.append("high_withdrawal_ratio")

        addresses = await self.withdrawal_repo.distinct_addresses(user_id)
        if len(addresses) > self.settings.max_withdrawal_addresses:
            activities.append("multiple_withdrawal_addresses")

        withdrawals = await self.withdrawal_repo.find_user_withdrawals_since(
            user_id, now - timedelta(days=RISK_LOOKBACK_DAYS)
        )
        if has_automated_pattern(withdrawals):
            activities.append("automated_withdrawal_pattern")
        withdrawal_issues = len(activities) - deposit_issues

        score = min(
            MAX_RISK_SCORE,
            deposit_issues * DEPOSIT_PATTERN_WEIGHT
            + withdrawal_issues * WITHDRAWAL_PATTERN_WEIGHT,
        )
        assessment = RiskAssessment(
            user_id=user_id,
            risk_score=score,
            activities=activities,
            is_high_risk=score >= self.settings.high_risk_threshold,
            should_block=score >= self.settings.block_threshold,
        )

        if persist and activities:
            await self.audit_repo.record(
                "fraud.user_evaluated",
                message="Suspicious activity detected",
                user_id=user_id,
                entity_type="user",
                entity_id=user_id,
                severity=AuditSeverity.WARNING,
                details={"risk_score": score, "activities": activities},
            )
            await self._apply_score(user, score, activities)

        return assessment

    async def flag_user(self, user: User, reason: str) -> None:
        """Mark a user for manual review."""
        if user.is_flagged:
            return
        user.is_flagged = True
        user.flagged_reason = reason[:255]
        await self.session.flush()

        self.logger.warning(
            f"User {user.id} flagged: {reason}",
            extra={"user_id": user.id, "reason": reason},
        )
        await self.audit_repo.record(
            EventName.FRAUD_USER_FLAGGED,
            message=reason,
            user_id=user.id,
            entity_type="user",
            entity_id=user.id,
            severity=AuditSeverity.WARNING,
            details={"risk_score": user.risk_score},
        )
        self.emit(
            EventName.FRAUD_USER_FLAGGED,
            user_id=user.id,
            reason=reason,
            risk_score=user.risk_score,
        )

    async def _apply_score(
        self, user: User, score: int, activities: list[str]
    ) -> None:
        user.risk_score = score
        await self.session.flush()
        if score >= self.settings.high_risk_threshold:
            await self.flag_user(
                user, f"high_risk_score:{score}:{','.join(activities)}"
            )

    async def _audit(
        self,
        entity_type: str,
        user_id: int,
        entity_id: int | None,
        decision: FraudDecision,
    ) -> None:
        if decision.allowed:
            event_type = f"fraud.{entity_type}_passed"
            severity = (
                AuditSeverity.WARNING if decision.signals else AuditSeverity.INFO
            )
        else:
            event_type = f"fraud.{entity_type}_rejected"
            severity = AuditSeverity.WARNING
            self.logger.warning(
                f"Fraud gate rejected {entity_type} for user {user_id}: "
                f"{decision.rule}",
                extra={"user_id": user_id, "rule": decision.rule, **decision.details},
            )

        await self.audit_repo.record(
            event_type,
            message=decision.reason,
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            severity=severity,
            details={
                "rule": decision.rule,
                "signals": decision.signals,
                "requires_additional_verification":
                    decision.requires_additional_verification,
                **decision.details,
            },
        )
