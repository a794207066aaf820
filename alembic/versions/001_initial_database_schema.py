"""Initial schema: webhooks and webhook deliveries

Revision ID: 001
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create webhooks table
    op.create_table('webhooks',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column('events', postgresql.JSONB(), nullable=False),
        sa.Column('secret', sa.String(length=128), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('platform', sa.String(length=20), nullable=False, server_default='generic'),
        sa.Column('headers', postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('max_retries', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('retry_delay_ms', sa.Integer(), nullable=False, server_default='1000'),
        sa.Column('success_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failure_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_triggered', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_success', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_failure', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("platform IN ('generic', 'n8n', 'zapier', 'make', 'custom')", name='valid_webhook_platform'),
        sa.CheckConstraint('max_retries >= 0 AND max_retries <= 10', name='valid_max_retries'),
        sa.CheckConstraint('retry_delay_ms >= 100 AND retry_delay_ms <= 60000', name='valid_retry_delay'),
        sa.CheckConstraint('success_count >= 0 AND failure_count >= 0', name='non_negative_webhook_counters'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_webhooks_tenant_id', 'webhooks', ['tenant_id'], unique=False)
    op.create_index('ix_webhooks_tenant_active', 'webhooks', ['tenant_id', 'is_active'], unique=False)
    op.create_index('ix_webhooks_events', 'webhooks', ['events'], unique=False, postgresql_using='gin')
    op.create_index('ix_webhooks_platform', 'webhooks', ['platform'], unique=False)

    # Create webhook_deliveries table; no foreign key so history survives webhook deletion
    op.create_table('webhook_deliveries',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('webhook_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('event', sa.String(length=100), nullable=False),
        sa.Column('payload', postgresql.JSONB(), nullable=False),
        sa.Column('request_body', sa.Text(), nullable=True),
        sa.Column('signature', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('response_status', sa.Integer(), nullable=True),
        sa.Column('response_body', sa.Text(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('attempt_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('next_retry_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("status IN ('pending', 'success', 'failed', 'retrying')", name='valid_delivery_status'),
        sa.CheckConstraint('attempt_count >= 0 AND attempt_count <= max_attempts', name='attempts_within_budget'),
        sa.CheckConstraint('max_attempts >= 1', name='positive_max_attempts'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_webhook_deliveries_webhook_status', 'webhook_deliveries', ['webhook_id', 'status'], unique=False)
    op.create_index(
        'ix_webhook_deliveries_tenant_created', 'webhook_deliveries',
        ['tenant_id', sa.text('created_at DESC')], unique=False
    )
    op.create_index('ix_webhook_deliveries_status_next_retry', 'webhook_deliveries', ['status', 'next_retry_at'], unique=False)

    # Keep updated_at current on raw SQL updates as well
    op.execute("""
        CREATE OR REPLACE FUNCTION set_updated_at()
        RETURNS trigger AS $$
        BEGIN
            NEW.updated_at := now();
            RETURN NEW;
        END
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER webhooks_set_updated_at
        BEFORE UPDATE ON webhooks
        FOR EACH ROW EXECUTE FUNCTION set_updated_at();
    """)
    op.execute("""
        CREATE TRIGGER webhook_deliveries_set_updated_at
        BEFORE UPDATE ON webhook_deliveries
        FOR EACH ROW EXECUTE FUNCTION set_updated_at();
    """)


def downgrade() -> None:
    # Drop triggers
    op.execute("DROP TRIGGER IF EXISTS webhook_deliveries_set_updated_at ON webhook_deliveries;")
    op.execute("DROP TRIGGER IF EXISTS webhooks_set_updated_at ON webhooks;")
    op.execute("DROP FUNCTION IF EXISTS set_updated_at();")

    # Drop tables in reverse order
    op.drop_table('webhook_deliveries')
    op.drop_table('webhooks')
