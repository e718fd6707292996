"""Search Console access layer tables

Creates:
- gsc_cache_logs: cached provider payloads per (client, endpoint signature)
- api_quota_tracking: daily API budget counters per (client, api, date)
- client_gsc_tokens: per-client OAuth tokens

Revision ID: 001_gsc_access_layer
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_gsc_access_layer'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create access layer tables."""

    op.create_table(
        'gsc_cache_logs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('client_id', sa.String(255), nullable=False),
        sa.Column('endpoint_signature', sa.String(64), nullable=False),
        sa.Column('data_payload', sa.JSON(), nullable=False),
        sa.Column('row_count', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('client_id', 'endpoint_signature', name='uq_gsc_cache_client_signature'),
    )
    op.create_index('ix_gsc_cache_logs_client_id', 'gsc_cache_logs', ['client_id'])
    op.create_index('ix_gsc_cache_logs_expires_at', 'gsc_cache_logs', ['expires_at'])
    op.create_index('ix_gsc_cache_client_expires', 'gsc_cache_logs', ['client_id', 'expires_at'])

    op.create_table(
        'api_quota_tracking',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('client_id', sa.String(255), nullable=False),
        sa.Column('api_type', sa.String(20), nullable=False, server_default='GSC'),
        sa.Column('quota_date', sa.Date(), nullable=False),
        sa.Column('allocated_quota', sa.Integer(), nullable=False, server_default='25000'),
        sa.Column('used_quota', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reserved_quota', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('client_id', 'api_type', 'quota_date', name='uq_api_quota_client_type_date'),
        sa.CheckConstraint("api_type IN ('GSC', 'SERPER', 'GEMINI')", name='ck_api_quota_api_type'),
    )
    op.create_index('ix_api_quota_tracking_client_id', 'api_quota_tracking', ['client_id'])
    op.create_index('ix_api_quota_tracking_quota_date', 'api_quota_tracking', ['quota_date'])

    op.create_table(
        'client_gsc_tokens',
        sa.Column('client_id', sa.String(255), primary_key=True),
        sa.Column('access_token', sa.String(2048), nullable=False),
        sa.Column('refresh_token', sa.String(2048), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('scope', sa.String(1000), nullable=False, server_default=''),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    """Drop access layer tables."""
    op.drop_table('client_gsc_tokens')

    op.drop_index('ix_api_quota_tracking_quota_date', table_name='api_quota_tracking')
    op.drop_index('ix_api_quota_tracking_client_id', table_name='api_quota_tracking')
    op.drop_table('api_quota_tracking')

    op.drop_index('ix_gsc_cache_client_expires', table_name='gsc_cache_logs')
    op.drop_index('ix_gsc_cache_logs_expires_at', table_name='gsc_cache_logs')
    op.drop_index('ix_gsc_cache_logs_client_id', table_name='gsc_cache_logs')
    op.drop_table('gsc_cache_logs')
