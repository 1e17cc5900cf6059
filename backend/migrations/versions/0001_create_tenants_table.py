"""Create tenants registry table

Revision ID: 0001_create_tenants_table
Revises:
Create Date: 2025-01-05 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_create_tenants_table'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('tenants',
        sa.Column('id', sa.Uuid(), nullable=False, comment='Unique identifier for the record'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  comment='Timestamp when record was created (UTC)'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  comment='Timestamp when record was last updated (UTC)'),
        sa.Column('tenant_id', sa.String(length=50), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('schema_name', sa.String(length=63), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('description', sa.String(length=500), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='UNPROVISIONED'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('last_operation_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_tenants_tenant_id'), 'tenants', ['tenant_id'], unique=True)
    op.create_index(op.f('ix_tenants_schema_name'), 'tenants', ['schema_name'], unique=True)
    op.create_index('ix_tenants_status_active', 'tenants', ['status', 'is_active'], unique=False)


def downgrade():
    op.drop_index('ix_tenants_status_active', table_name='tenants')
    op.drop_index(op.f('ix_tenants_schema_name'), table_name='tenants')
    op.drop_index(op.f('ix_tenants_tenant_id'), table_name='tenants')
    op.drop_table('tenants')
