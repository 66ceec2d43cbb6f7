"""Initial settlement schema.

Revision ID: settlement_001
Revises:
Create Date: 2026-10-12

Creates users, wallet balances, matches, participants, the transaction ledger
and the match activity feed, and seeds the house account that collects
platform fees.
"""
from datetime import datetime, UTC
from typing import Sequence, Union
from uuid import UUID
from alembic import op
import sqlalchemy as sa
from backend.migrations.util import get_uuid_type


# revision identifiers, used by Alembic.
revision: str = "settlement_001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

HOUSE_USER_ID = UUID("00000000-0000-0000-0000-000000000001")


def upgrade() -> None:
    """Create settlement tables."""
    uuid_type = get_uuid_type()

    users = op.create_table(
        'users',
        sa.Column('user_id', uuid_type, nullable=False),
        sa.Column('username', sa.String(80), nullable=False),
        sa.Column('region', sa.String(32), nullable=False, server_default='US'),
        sa.Column('subscription_tier', sa.String(20), nullable=False, server_default='free'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('user_id'),
        sa.UniqueConstraint('username', name='uq_users_username'),
    )

    op.create_table(
        'wallet_balances',
        sa.Column('user_id', uuid_type, nullable=False),
        sa.Column('total_balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('withdrawable_balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('user_id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id'], ondelete='CASCADE'),
        sa.CheckConstraint('withdrawable_balance >= 0', name='ck_wallet_withdrawable_non_negative'),
        sa.CheckConstraint('withdrawable_balance <= total_balance', name='ck_wallet_withdrawable_le_total'),
    )

    # matches table - one wager between participants
    op.create_table(
        'matches',
        sa.Column('match_id', uuid_type, nullable=False),
        sa.Column('creator_id', uuid_type, nullable=False),
        sa.Column('activity_type', sa.String(100), nullable=False),
        sa.Column('custom_rules', sa.String(1000), nullable=True),
        sa.Column('stake_amount', sa.Integer(), nullable=False),
        sa.Column('total_pot', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_premium_only', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('voting_deadline', sa.DateTime(timezone=True), nullable=True),
        sa.Column('vote_reminder_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('dispute_deadline', sa.DateTime(timezone=True), nullable=True),
        sa.Column('dispute_evidence', sa.JSON(), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payout_amount', sa.Integer(), nullable=True),
        sa.Column('fee_amount', sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint('match_id'),
        sa.ForeignKeyConstraint(['creator_id'], ['users.user_id']),
    )
    op.create_index('ix_matches_creator_id', 'matches', ['creator_id'])
    op.create_index('ix_matches_status', 'matches', ['status'])
    op.create_index('ix_matches_created_at', 'matches', ['created_at'])
    op.create_index('ix_matches_status_created', 'matches', ['status', 'created_at'])

    op.create_table(
        'match_participants',
        sa.Column('participant_id', uuid_type, nullable=False),
        sa.Column('match_id', uuid_type, nullable=False),
        sa.Column('user_id', uuid_type, nullable=False),
        sa.Column('stake_amount', sa.Integer(), nullable=False),
        sa.Column('subscription_tier', sa.String(20), nullable=False, server_default='free'),
        sa.Column('vote_for_user_id', uuid_type, nullable=True),
        sa.Column('voted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_winner', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('payout_amount', sa.Integer(), nullable=True),
        sa.Column('leave_requested', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('leave_approved_by', sa.JSON(), nullable=False),
        sa.Column('joined_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('participant_id'),
        sa.ForeignKeyConstraint(['match_id'], ['matches.match_id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id']),
        sa.UniqueConstraint('match_id', 'user_id', name='uq_match_participants_match_user'),
    )
    op.create_index('ix_match_participants_match_id', 'match_participants', ['match_id'])
    op.create_index('ix_match_participants_user_id', 'match_participants', ['user_id'])

    # transactions table - append-only ledger
    op.create_table(
        'transactions',
        sa.Column('transaction_id', uuid_type, nullable=False),
        sa.Column('user_id', uuid_type, nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('withdrawable_amount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('related_match_id', uuid_type, nullable=True),
        sa.Column('external_reference', sa.String(128), nullable=True),
        sa.Column('total_balance_after', sa.Integer(), nullable=False),
        sa.Column('withdrawable_balance_after', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('transaction_id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['related_match_id'], ['matches.match_id']),
    )
    op.create_index('ix_transactions_user_id', 'transactions', ['user_id'])
    op.create_index('ix_transactions_kind', 'transactions', ['kind'])
    op.create_index('ix_transactions_related_match_id', 'transactions', ['related_match_id'])
    op.create_index('ix_transactions_created_at', 'transactions', ['created_at'])
    op.create_index('ix_transactions_user_created', 'transactions', ['user_id', 'created_at'])

    op.create_table(
        'match_activities',
        sa.Column('activity_id', uuid_type, nullable=False),
        sa.Column('match_id', uuid_type, nullable=False),
        sa.Column('activity_type', sa.String(20), nullable=False),
        sa.Column('message', sa.String(500), nullable=False),
        sa.Column('user_id', uuid_type, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('activity_id'),
        sa.ForeignKeyConstraint(['match_id'], ['matches.match_id'], ondelete='CASCADE'),
    )
    op.create_index('ix_match_activities_match_created', 'match_activities', ['match_id', 'created_at'])

    op.bulk_insert(users, [{
        'user_id': HOUSE_USER_ID,
        'username': 'house',
        'region': 'US',
        'subscription_tier': 'free',
        'created_at': datetime.now(UTC),
    }])


def downgrade() -> None:
    """Drop settlement tables."""
    op.drop_index('ix_match_activities_match_created', table_name='match_activities')
    op.drop_table('match_activities')

    op.drop_index('ix_transactions_user_created', table_name='transactions')
    op.drop_index('ix_transactions_created_at', table_name='transactions')
    op.drop_index('ix_transactions_related_match_id', table_name='transactions')
    op.drop_index('ix_transactions_kind', table_name='transactions')
    op.drop_index('ix_transactions_user_id', table_name='transactions')
    op.drop_table('transactions')

    op.drop_index('ix_match_participants_user_id', table_name='match_participants')
    op.drop_index('ix_match_participants_match_id', table_name='match_participants')
    op.drop_table('match_participants')

    op.drop_index('ix_matches_status_created', table_name='matches')
    op.drop_index('ix_matches_created_at', table_name='matches')
    op.drop_index('ix_matches_status', table_name='matches')
    op.drop_index('ix_matches_creator_id', table_name='matches')
    op.drop_table('matches')

    op.drop_table('wallet_balances')
    op.drop_table('users')
