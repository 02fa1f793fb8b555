"""Initial payment ledger schema

Revision ID: 20261018_initial
Revises:
Create Date: 2026-10-18

This migration creates:
1. Collaborator read models (users, session_tokens, applications)
2. Commission rate register (commission_rates, commission_rate_changes)
3. Payout requests and payment entries (with balance/allocation checks)
4. Webhook event register and audit trail
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. COLLABORATOR READ MODELS
    # ==========================================================================
    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=True),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('kyc_verified', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('kyc_verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.create_index('ix_users_email', ['email'], unique=True)
        batch_op.create_index('ix_users_role', ['role'], unique=False)
        batch_op.create_index('ix_users_role_active', ['role', 'is_active'], unique=False)

    op.create_table('session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('session_tokens', schema=None) as batch_op:
        batch_op.create_index('ix_session_tokens_user_id', ['user_id'], unique=False)
        batch_op.create_index('ix_session_tokens_token_hash', ['token_hash'], unique=True)
        batch_op.create_index('ix_session_tokens_expires_at', ['expires_at'], unique=False)
        batch_op.create_index('ix_session_tokens_is_revoked', ['is_revoked'], unique=False)
        batch_op.create_index('ix_session_tokens_user_active', ['user_id', 'is_revoked'], unique=False)

    op.create_table('applications',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), nullable=False),
        sa.Column('landlord_id', sa.Integer(), nullable=False),
        sa.Column('property_id', sa.Integer(), nullable=True),
        sa.Column('property_title', sa.String(length=255), nullable=True),
        sa.Column('application_fee_amount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='NGN'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['client_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['landlord_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('applications', schema=None) as batch_op:
        batch_op.create_index('ix_applications_client_id', ['client_id'], unique=False)
        batch_op.create_index('ix_applications_landlord_id', ['landlord_id'], unique=False)
        batch_op.create_index('ix_applications_property_id', ['property_id'], unique=False)

    # ==========================================================================
    # 2. COMMISSION RATE REGISTER
    # ==========================================================================
    op.create_table('commission_rates',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('rate', sa.Numeric(precision=7, scale=6), nullable=False),
        sa.Column('effective_from', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_updated_by_user_id', sa.Integer(), nullable=True),
        sa.Column('last_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('change_reason', sa.String(length=500), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('rate >= 0 AND rate <= 1', name='ck_commission_rates_range'),
        sa.ForeignKeyConstraint(['last_updated_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('commission_rate_changes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('rate', sa.Numeric(precision=7, scale=6), nullable=False),
        sa.Column('previous_rate', sa.Numeric(precision=7, scale=6), nullable=False),
        sa.Column('reason', sa.String(length=500), nullable=False),
        sa.Column('changed_by_user_id', sa.Integer(), nullable=False),
        sa.Column('changed_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['changed_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('commission_rate_changes', schema=None) as batch_op:
        batch_op.create_index('ix_commission_rate_changes_changed_at', ['changed_at'], unique=False)
        batch_op.create_index('ix_commission_rate_changes_changed_by_user_id', ['changed_by_user_id'], unique=False)

    # ==========================================================================
    # 3. PAYOUT REQUESTS AND PAYMENT ENTRIES
    # ==========================================================================
    op.create_table('payout_requests',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('landlord_id', sa.Integer(), nullable=False),
        sa.Column('requested_amount', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('payment_method', sa.String(length=24), nullable=False),
        sa.Column('bank_details', sa.JSON(), nullable=True),
        sa.Column('stripe_account_id', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('related_payment_ids', sa.JSON(), nullable=False),
        sa.Column('requested_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('reviewed_by_user_id', sa.Integer(), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('admin_notes', sa.String(length=1000), nullable=True),
        sa.Column('rejection_reason', sa.String(length=500), nullable=True),
        sa.Column('transfer_id', sa.String(length=255), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('processed_by_user_id', sa.Integer(), nullable=True),
        sa.Column('execution_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_failure_reason', sa.String(length=500), nullable=True),
        sa.Column('failure_count', sa.Integer(), nullable=False, server_default='0'),
        sa.CheckConstraint('amount > 0', name='ck_payout_requests_amount_positive'),
        sa.CheckConstraint('amount >= requested_amount', name='ck_payout_requests_covers_request'),
        sa.ForeignKeyConstraint(['landlord_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['reviewed_by_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['processed_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transfer_id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('payout_requests', schema=None) as batch_op:
        batch_op.create_index('ix_payout_requests_landlord_id', ['landlord_id'], unique=False)
        batch_op.create_index('ix_payout_requests_status', ['status'], unique=False)
        batch_op.create_index('ix_payout_requests_requested_at', ['requested_at'], unique=False)
        batch_op.create_index('ix_payout_requests_landlord_status', ['landlord_id', 'status'], unique=False)

    op.create_table('payment_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('application_id', sa.Integer(), nullable=False),
        sa.Column('payer_user_id', sa.Integer(), nullable=False),
        sa.Column('landlord_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('kind', sa.String(length=24), nullable=False),
        sa.Column('is_escrow', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('escrow_status', sa.String(length=16), nullable=True),
        sa.Column('escrow_held_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('escrow_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('escrow_released_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('escrow_released_by_user_id', sa.Integer(), nullable=True),
        sa.Column('escrow_interest', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('property_visited', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('documents_received', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('commission_rate', sa.Numeric(precision=7, scale=6), nullable=False),
        sa.Column('commission_amount', sa.Integer(), nullable=False),
        sa.Column('landlord_net_amount', sa.Integer(), nullable=False),
        sa.Column('external_reference', sa.String(length=255), nullable=False),
        sa.Column('payment_intent_id', sa.String(length=255), nullable=True),
        sa.Column('failure_reason', sa.String(length=500), nullable=True),
        sa.Column('failure_code', sa.String(length=100), nullable=True),
        sa.Column('refund_amount', sa.Integer(), nullable=True),
        sa.Column('refund_reason', sa.String(length=500), nullable=True),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refunded_by_user_id', sa.Integer(), nullable=True),
        sa.Column('allocated_to_payout', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('payout_request_id', sa.Integer(), nullable=True),
        sa.Column('payout_allocated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('description', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('amount > 0', name='ck_payment_entries_amount_positive'),
        sa.CheckConstraint(
            'landlord_net_amount + commission_amount + escrow_interest = amount',
            name='ck_payment_entries_net_balance'),
        sa.CheckConstraint('escrow_interest >= 0', name='ck_payment_entries_interest_nonneg'),
        sa.CheckConstraint(
            '(is_escrow AND escrow_status IS NOT NULL) OR (NOT is_escrow AND escrow_status IS NULL)',
            name='ck_payment_entries_escrow_status'),
        sa.CheckConstraint(
            '(allocated_to_payout AND payout_request_id IS NOT NULL) '
            'OR (NOT allocated_to_payout AND payout_request_id IS NULL)',
            name='ck_payment_entries_allocation'),
        sa.ForeignKeyConstraint(['application_id'], ['applications.id'], ),
        sa.ForeignKeyConstraint(['payer_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['landlord_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['escrow_released_by_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['refunded_by_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['payout_request_id'], ['payout_requests.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('payment_entries', schema=None) as batch_op:
        batch_op.create_index('ix_payment_entries_application_id', ['application_id'], unique=False)
        batch_op.create_index('ix_payment_entries_payer_user_id', ['payer_user_id'], unique=False)
        batch_op.create_index('ix_payment_entries_landlord_id', ['landlord_id'], unique=False)
        batch_op.create_index('ix_payment_entries_status', ['status'], unique=False)
        batch_op.create_index('ix_payment_entries_kind', ['kind'], unique=False)
        batch_op.create_index('ix_payment_entries_escrow_status', ['escrow_status'], unique=False)
        batch_op.create_index('ix_payment_entries_external_reference', ['external_reference'], unique=True)
        batch_op.create_index('ix_payment_entries_payment_intent_id', ['payment_intent_id'], unique=False)
        batch_op.create_index('ix_payment_entries_allocated_to_payout', ['allocated_to_payout'], unique=False)
        batch_op.create_index('ix_payment_entries_payout_request_id', ['payout_request_id'], unique=False)
        batch_op.create_index('ix_payment_entries_created_at', ['created_at'], unique=False)
        batch_op.create_index('ix_payment_entries_landlord_status', ['landlord_id', 'status'], unique=False)
        batch_op.create_index(
            'ix_payment_entries_eligible', ['landlord_id', 'allocated_to_payout', 'created_at'], unique=False)

    # ==========================================================================
    # 4. WEBHOOK REGISTER AND AUDIT TRAIL
    # ==========================================================================
    op.create_table('webhook_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_id', sa.String(length=255), nullable=False),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('outcome', sa.String(length=16), nullable=False),
        sa.Column('detail', sa.String(length=500), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('webhook_events', schema=None) as batch_op:
        batch_op.create_index('ix_webhook_events_event_id', ['event_id'], unique=True)

    op.create_table('audit_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=64), nullable=False),
        sa.Column('entity_id', sa.String(length=64), nullable=True),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('before', sa.JSON(), nullable=True),
        sa.Column('after', sa.JSON(), nullable=True),
        sa.Column('note', sa.String(length=500), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['actor_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('audit_events', schema=None) as batch_op:
        batch_op.create_index('ix_audit_events_action', ['action'], unique=False)
        batch_op.create_index('ix_audit_events_actor_user_id', ['actor_user_id'], unique=False)
        batch_op.create_index('ix_audit_events_entity', ['entity_type', 'entity_id'], unique=False)
        batch_op.create_index('ix_audit_events_occurred', ['occurred_at'], unique=False)


def downgrade():
    op.drop_table('audit_events')
    op.drop_table('webhook_events')
    op.drop_table('payment_entries')
    op.drop_table('payout_requests')
    op.drop_table('commission_rate_changes')
    op.drop_table('commission_rates')
    op.drop_table('applications')
    op.drop_table('session_tokens')
    op.drop_table('users')
