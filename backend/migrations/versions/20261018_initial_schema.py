"""Initial schema: profiles, sessions, shopping requests, items, counters

Revision ID: 20261018_initial
Revises:
Create Date: 2026-10-18

This migration creates:
1. profiles (role + self-referencing manager hierarchy)
2. session_tokens (hashed bearer tokens)
3. shopping_requests (workflow status + per-transition audit fields)
4. request_items (line items, replaced wholesale on save)
5. request_number_counters (one row per year, atomically incremented)
6. security_events (append-only audit log)
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
    # 1. PROFILES
    # ==========================================================================
    op.create_table('profiles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=32), nullable=False, server_default='user'),
        sa.Column('manager_id', sa.Integer(), nullable=True),
        sa.Column('cost_center', sa.String(length=64), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("role IN ('user', 'manager', 'procurement', 'admin')", name='ck_profiles_role'),
        sa.CheckConstraint('manager_id IS NULL OR manager_id <> id', name='ck_profiles_not_own_manager'),
        sa.ForeignKeyConstraint(['manager_id'], ['profiles.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('profiles', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_profiles_email'), ['email'], unique=True)
        batch_op.create_index(batch_op.f('ix_profiles_manager_id'), ['manager_id'], unique=False)

    # ==========================================================================
    # 2. SESSION TOKENS
    # ==========================================================================
    op.create_table('session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('profile_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('last_used_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_reason', sa.String(length=128), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.ForeignKeyConstraint(['profile_id'], ['profiles.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('session_tokens', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_session_tokens_profile_id'), ['profile_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_session_tokens_token_hash'), ['token_hash'], unique=True)
        batch_op.create_index('ix_session_tokens_profile_revoked', ['profile_id', 'is_revoked'], unique=False)

    # ==========================================================================
    # 3. SHOPPING REQUESTS
    # ==========================================================================
    op.create_table('shopping_requests',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('request_number', sa.String(length=10), nullable=False),
        sa.Column('requester_id', sa.Integer(), nullable=False),
        sa.Column('request_type', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('total_amount_cents', sa.Integer(), nullable=False),
        sa.Column('justification', sa.Text(), nullable=True),
        sa.Column('delivery_date', sa.Date(), nullable=True),
        sa.Column('preferred_supplier', sa.String(length=255), nullable=True),
        sa.Column('client_name', sa.String(length=255), nullable=True),
        sa.Column('client_id', sa.String(length=64), nullable=True),
        sa.Column('assigned_approver_id', sa.Integer(), nullable=True),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approved_by_id', sa.Integer(), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approval_comment', sa.Text(), nullable=True),
        sa.Column('rejected_by_id', sa.Integer(), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('handled_by_id', sa.Integer(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('procurement_notes', sa.Text(), nullable=True),
        sa.Column('cancelled_by_id', sa.Integer(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_note', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint(
            "status IN ('draft', 'pending_approval', 'approved', 'rejected', 'completed', 'cancelled')",
            name='ck_shopping_requests_status'
        ),
        sa.CheckConstraint("request_type IN ('service', 'material')", name='ck_shopping_requests_type'),
        sa.CheckConstraint('total_amount_cents >= 0', name='ck_shopping_requests_total_nonneg'),
        sa.ForeignKeyConstraint(['requester_id'], ['profiles.id'], ),
        sa.ForeignKeyConstraint(['assigned_approver_id'], ['profiles.id'], ),
        sa.ForeignKeyConstraint(['approved_by_id'], ['profiles.id'], ),
        sa.ForeignKeyConstraint(['rejected_by_id'], ['profiles.id'], ),
        sa.ForeignKeyConstraint(['handled_by_id'], ['profiles.id'], ),
        sa.ForeignKeyConstraint(['cancelled_by_id'], ['profiles.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('shopping_requests', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_shopping_requests_request_number'), ['request_number'], unique=True)
        batch_op.create_index(batch_op.f('ix_shopping_requests_requester_id'), ['requester_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_shopping_requests_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_shopping_requests_assigned_approver_id'), ['assigned_approver_id'], unique=False)
        batch_op.create_index('ix_shopping_requests_status_created', ['status', 'created_at'], unique=False)

    # ==========================================================================
    # 4. REQUEST ITEMS
    # ==========================================================================
    op.create_table('request_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('request_id', sa.Integer(), nullable=False),
        sa.Column('line_number', sa.Integer(), nullable=False),
        sa.Column('item_code', sa.String(length=64), nullable=False),
        sa.Column('description', sa.String(length=512), nullable=False),
        sa.Column('quantity', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('unit', sa.String(length=16), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=True),
        sa.Column('total_price_cents', sa.Integer(), nullable=False),
        sa.Column('supplier', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_request_items_quantity_positive'),
        sa.CheckConstraint(
            "unit IN ('Kg', 'Liter', 'Unit', 'Piece', 'Box', 'Meter')",
            name='ck_request_items_unit'
        ),
        sa.CheckConstraint('unit_price_cents IS NULL OR unit_price_cents >= 0', name='ck_request_items_price_nonneg'),
        sa.ForeignKeyConstraint(['request_id'], ['shopping_requests.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('request_id', 'line_number', name='uq_request_items_request_line'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('request_items', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_request_items_request_id'), ['request_id'], unique=False)

    # ==========================================================================
    # 5. REQUEST NUMBER COUNTERS
    # ==========================================================================
    op.create_table('request_number_counters',
        sa.Column('year', sa.String(length=4), nullable=False),
        sa.Column('last_number', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('year')
    )

    # ==========================================================================
    # 6. SECURITY EVENTS
    # ==========================================================================
    op.create_table('security_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('profile_id', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('resource', sa.String(length=128), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['profile_id'], ['profiles.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('security_events', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_security_events_profile_id'), ['profile_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_security_events_event_type'), ['event_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_security_events_success'), ['success'], unique=False)
        batch_op.create_index(batch_op.f('ix_security_events_occurred_at'), ['occurred_at'], unique=False)
        batch_op.create_index('ix_security_events_profile_type', ['profile_id', 'event_type'], unique=False)


def downgrade():
    op.drop_table('security_events')
    op.drop_table('request_number_counters')
    op.drop_table('request_items')
    op.drop_table('shopping_requests')
    op.drop_table('session_tokens')
    op.drop_table('profiles')
