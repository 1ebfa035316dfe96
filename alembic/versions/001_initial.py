"""Initial migration

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Catalog products (pricing fields only)
    op.create_table(
        'products_draft',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('title', sa.Text(), nullable=True),
        sa.Column('sku', sa.String(length=64), nullable=True),
        sa.Column('cost', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('selling_price', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='draft'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_products_draft_status', 'products_draft', ['status'])

    # Price rules
    op.create_table(
        'price_rules',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('rule_name', sa.String(length=128), nullable=False),
        sa.Column('target_margin_pct', sa.Numeric(precision=7, scale=2), nullable=False),
        sa.Column('min_margin_pct', sa.Numeric(precision=7, scale=2), nullable=True),
        sa.Column('rounding_rule', sa.String(length=8), nullable=False, server_default='none'),
        sa.Column('currency_preference', sa.String(length=8), nullable=False, server_default='CAD'),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint('id'),
    )

    # Price checks (append-only)
    op.create_table(
        'price_checks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_draft_id', sa.Integer(), nullable=False),
        sa.Column('supplier_price_amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('supplier_price_currency', sa.String(length=3), nullable=False),
        sa.Column('selling_price_amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('selling_price_currency', sa.String(length=3), nullable=False),
        sa.Column('margin_pct', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('delta_pct', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('observed_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['product_draft_id'], ['products_draft.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_price_checks_observed_at', 'price_checks', ['observed_at'])

    # Settings
    op.create_table(
        'settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=128), nullable=False),
        sa.Column('value_jsonb', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('key'),
    )

    # API tokens
    op.create_table(
        'api_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('provider', sa.String(length=16), nullable=False),
        sa.Column('token_value_encrypted', sa.Text(), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_api_tokens_provider', 'api_tokens', ['provider'])

    # Token usage audit log
    op.create_table(
        'token_usage_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('token_id', sa.Integer(), nullable=False),
        sa.Column('provider', sa.String(length=16), nullable=False),
        sa.Column('process_name', sa.String(length=64), nullable=False),
        sa.Column('record_count', sa.Integer(), nullable=True),
        sa.Column('details', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('used_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['token_id'], ['api_tokens.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_token_usage_logs_token_id_used_at', 'token_usage_logs', ['token_id', 'used_at'])

    # Sync jobs
    op.create_table(
        'sync_jobs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('operation', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='queued'),
        sa.Column('record_count', sa.Integer(), nullable=True),
        sa.Column('log_text', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sync_jobs_entity_type_status', 'sync_jobs', ['entity_type', 'status'])

    # Synced entity snapshots
    op.create_table(
        'synced_entities',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('external_id', sa.String(length=128), nullable=False),
        sa.Column('payload', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('synced_at', sa.DateTime(), nullable=False),
        sa.Column('sync_job_id', sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['sync_job_id'], ['sync_jobs.id'], ondelete='SET NULL'),
        sa.UniqueConstraint('entity_type', 'external_id', name='uq_synced_entity_type_external_id'),
    )


def downgrade() -> None:
    op.drop_table('synced_entities')
    op.drop_index('ix_sync_jobs_entity_type_status', table_name='sync_jobs')
    op.drop_table('sync_jobs')
    op.drop_index('ix_token_usage_logs_token_id_used_at', table_name='token_usage_logs')
    op.drop_table('token_usage_logs')
    op.drop_index('ix_api_tokens_provider', table_name='api_tokens')
    op.drop_table('api_tokens')
    op.drop_table('settings')
    op.drop_index('ix_price_checks_observed_at', table_name='price_checks')
    op.drop_table('price_checks')
    op.drop_table('price_rules')
    op.drop_index('ix_products_draft_status', table_name='products_draft')
    op.drop_table('products_draft')
