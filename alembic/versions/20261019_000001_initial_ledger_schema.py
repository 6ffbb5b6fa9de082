"""Initial ledger schema.

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19

Users, balances per bucket, the transaction log, deposits, withdrawals
with their approval sub-ledger, bonuses and audit events.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '20261019_000001'
down_revision = None
branch_labels = None
depends_on = None


MONEY = sa.DECIMAL(precision=18, scale=8)
PERCENT = sa.DECIMAL(precision=5, scale=2)
TIMESTAMP = sa.DateTime(timezone=True)
JSON = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade() -> None:
    """Create ledger tables."""
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('username', sa.String(length=255), nullable=True),
        sa.Column('referrer_id', sa.Integer(), nullable=True),
        sa.Column('deposit_address', sa.String(length=64), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_flagged', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('flagged_reason', sa.String(length=255), nullable=True),
        sa.Column('ledger_frozen', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('risk_score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('first_deposit_at', TIMESTAMP, nullable=True),
        sa.Column('deposit_unlock_at', TIMESTAMP, nullable=True),
        sa.Column('created_at', TIMESTAMP, nullable=False),
        sa.Column('updated_at', TIMESTAMP, nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['referrer_id'], ['users.id'], ondelete='SET NULL'),
        sa.UniqueConstraint('deposit_address'),
        sa.CheckConstraint(
            'risk_score >= 0 AND risk_score <= 100',
            name='check_user_risk_score_range'
        ),
    )
    op.create_index('ix_users_referrer_id', 'users', ['referrer_id'])
    op.create_index('ix_users_is_flagged', 'users', ['is_flagged'])
    op.create_index('ix_users_deposit_unlock_at', 'users', ['deposit_unlock_at'])

    op.create_table(
        'deposits',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('tx_hash', sa.String(length=128), nullable=False),
        sa.Column('from_address', sa.String(length=64), nullable=True),
        sa.Column('to_address', sa.String(length=64), nullable=True),
        sa.Column('block_number', sa.BigInteger(), nullable=True),
        sa.Column('network', sa.String(length=20), nullable=False, server_default='TRC20'),
        sa.Column('currency', sa.String(length=10), nullable=False, server_default='USDT'),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('confirmations', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('required_confirmations', sa.Integer(), nullable=False, server_default='19'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('failure_reason', sa.String(length=255), nullable=True),
        sa.Column('is_first_deposit', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('bonus_processed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('referral_processed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('extra_data', JSON, nullable=True),
        sa.Column('expires_at', TIMESTAMP, nullable=True),
        sa.Column('confirmed_at', TIMESTAMP, nullable=True),
        sa.Column('created_at', TIMESTAMP, nullable=False),
        sa.Column('updated_at', TIMESTAMP, nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('tx_hash'),
        sa.CheckConstraint('amount > 0', name='check_deposit_amount_positive'),
        sa.CheckConstraint(
            'confirmations >= 0', name='check_deposit_confirmations_non_negative'
        ),
    )
    op.create_index('ix_deposits_user_id', 'deposits', ['user_id'])
    op.create_index('ix_deposits_status', 'deposits', ['status'])
    op.create_index('idx_deposit_status_expires', 'deposits', ['status', 'expires_at'])
    op.create_index('idx_deposit_user_created', 'deposits', ['user_id', 'created_at'])

    op.create_table(
        'withdrawals',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('reference_id', sa.String(length=32), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('fee', MONEY, nullable=False, server_default='0'),
        sa.Column('fee_percent', PERCENT, nullable=False, server_default='0'),
        sa.Column('net_amount', MONEY, nullable=False),
        sa.Column('source', sa.String(length=20), nullable=False),
        sa.Column('currency', sa.String(length=10), nullable=False, server_default='USDT'),
        sa.Column('network', sa.String(length=20), nullable=False, server_default='TRC20'),
        sa.Column('to_address', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('required_approvals', sa.Integer(), nullable=False, server_default='2'),
        sa.Column(
            'requires_additional_verification', sa.Boolean(),
            nullable=False, server_default=sa.false()
        ),
        sa.Column('requires_two_factor', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('two_factor_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('tx_hash', sa.String(length=128), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('rejected_by_admin_id', sa.Integer(), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('dispatch_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('extra_data', JSON, nullable=True),
        sa.Column('created_at', TIMESTAMP, nullable=False),
        sa.Column('approved_at', TIMESTAMP, nullable=True),
        sa.Column('processed_at', TIMESTAMP, nullable=True),
        sa.Column('completed_at', TIMESTAMP, nullable=True),
        sa.Column('updated_at', TIMESTAMP, nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('reference_id'),
        sa.UniqueConstraint('tx_hash'),
        sa.CheckConstraint('amount > 0', name='check_withdrawal_amount_positive'),
        sa.CheckConstraint('fee >= 0', name='check_withdrawal_fee_non_negative'),
    )
    op.create_index('ix_withdrawals_user_id', 'withdrawals', ['user_id'])
    op.create_index('ix_withdrawals_status', 'withdrawals', ['status'])
    op.create_index('idx_withdrawal_user_status', 'withdrawals', ['user_id', 'status'])
    op.create_index('idx_withdrawal_to_address', 'withdrawals', ['to_address'])

    op.create_table(
        'withdrawal_approvals',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('withdrawal_id', sa.Integer(), nullable=False),
        sa.Column('admin_id', sa.Integer(), nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('created_at', TIMESTAMP, nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(
            ['withdrawal_id'], ['withdrawals.id'], ondelete='CASCADE'
        ),
        sa.UniqueConstraint(
            'withdrawal_id', 'admin_id', name='uq_withdrawal_approval_admin'
        ),
    )
    op.create_index(
        'ix_withdrawal_approvals_withdrawal_id',
        'withdrawal_approvals', ['withdrawal_id']
    )

    op.create_table(
        'bonuses',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('dedupe_key', sa.String(length=100), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=20), nullable=False, server_default='daily'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('bonus_date', sa.Date(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=True),
        sa.Column('deposit_balance', MONEY, nullable=True),
        sa.Column('total_deposits', MONEY, nullable=True),
        sa.Column('total_profit', MONEY, nullable=True),
        sa.Column('distribution_pool', MONEY, nullable=True),
        sa.Column('percentage', PERCENT, nullable=True),
        sa.Column('referral_from_id', sa.Integer(), nullable=True),
        sa.Column('referral_level', sa.Integer(), nullable=True),
        sa.Column('source_deposit_id', sa.Integer(), nullable=True),
        sa.Column('transaction_id', sa.Integer(), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', TIMESTAMP, nullable=False),
        sa.Column('distributed_at', TIMESTAMP, nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(
            ['referral_from_id'], ['users.id'], ondelete='SET NULL'
        ),
        sa.ForeignKeyConstraint(
            ['source_deposit_id'], ['deposits.id'], ondelete='SET NULL'
        ),
        sa.UniqueConstraint('dedupe_key'),
        sa.CheckConstraint('amount >= 0', name='check_bonus_amount_non_negative'),
        sa.CheckConstraint(
            'referral_level IS NULL OR referral_level >= 1',
            name='check_bonus_referral_level'
        ),
    )
    op.create_index('ix_bonuses_user_id', 'bonuses', ['user_id'])
    op.create_index('ix_bonuses_status', 'bonuses', ['status'])
    op.create_index('idx_bonus_date_status', 'bonuses', ['bonus_date', 'status'])
    op.create_index('idx_bonus_batch', 'bonuses', ['batch_id'])

    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=30), nullable=False),
        sa.Column('bucket', sa.String(length=20), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('fee', MONEY, nullable=False, server_default='0'),
        sa.Column('balance_before', MONEY, nullable=False),
        sa.Column('balance_after', MONEY, nullable=False),
        sa.Column('currency', sa.String(length=10), nullable=False, server_default='USDT'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='completed'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('extra_data', JSON, nullable=True),
        sa.Column('deposit_id', sa.Integer(), nullable=True),
        sa.Column('withdrawal_id', sa.Integer(), nullable=True),
        sa.Column('bonus_id', sa.Integer(), nullable=True),
        sa.Column('is_reversed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('related_transaction_id', sa.Integer(), nullable=True),
        sa.Column('reversed_by_admin_id', sa.Integer(), nullable=True),
        sa.Column('reversal_reason', sa.Text(), nullable=True),
        sa.Column('created_at', TIMESTAMP, nullable=False),
        sa.Column('completed_at', TIMESTAMP, nullable=True),
        sa.Column('reversed_at', TIMESTAMP, nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['deposit_id'], ['deposits.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(
            ['withdrawal_id'], ['withdrawals.id'], ondelete='SET NULL'
        ),
        sa.ForeignKeyConstraint(['bonus_id'], ['bonuses.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(
            ['related_transaction_id'], ['transactions.id'], ondelete='SET NULL'
        ),
        sa.UniqueConstraint('deposit_id'),
        sa.UniqueConstraint('bonus_id'),
    )
    op.create_index('ix_transactions_user_id', 'transactions', ['user_id'])
    op.create_index('ix_transactions_withdrawal_id', 'transactions', ['withdrawal_id'])
    op.create_index(
        'ix_transactions_related_transaction_id',
        'transactions', ['related_transaction_id']
    )
    op.create_index('idx_transaction_user_bucket', 'transactions', ['user_id', 'bucket'])
    op.create_index('idx_transaction_user_created', 'transactions', ['user_id', 'created_at'])
    op.create_index('idx_transaction_type_status', 'transactions', ['type', 'status'])

    op.create_table(
        'balances',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('bucket', sa.String(length=20), nullable=False),
        sa.Column('amount', MONEY, nullable=False, server_default='0'),
        sa.Column('updated_at', TIMESTAMP, nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('user_id', 'bucket', name='uq_balance_user_bucket'),
        sa.CheckConstraint('amount >= 0', name='check_balance_non_negative'),
        sa.CheckConstraint(
            "bucket IN ('deposit', 'bonus', 'referral')",
            name='check_balance_bucket'
        ),
    )
    op.create_index('ix_balances_user_id', 'balances', ['user_id'])

    op.create_table(
        'audit_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('severity', sa.String(length=16), nullable=False, server_default='info'),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('entity_type', sa.String(length=32), nullable=True),
        sa.Column('entity_id', sa.Integer(), nullable=True),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('details', JSON, nullable=True),
        sa.Column('created_at', TIMESTAMP, nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_audit_events_user_id', 'audit_events', ['user_id'])
    op.create_index(
        'idx_audit_event_type_created', 'audit_events', ['event_type', 'created_at']
    )
    op.create_index(
        'idx_audit_event_entity', 'audit_events', ['entity_type', 'entity_id']
    )


def downgrade() -> None:
    """Drop ledger tables."""
    op.drop_table('audit_events')
    op.drop_table('balances')
    op.drop_table('transactions')
    op.drop_table('bonuses')
    op.drop_table('withdrawal_approvals')
    op.drop_table('withdrawals')
    op.drop_table('deposits')
    op.drop_table('users')
