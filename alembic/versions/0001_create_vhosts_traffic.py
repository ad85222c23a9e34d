"""create vhosts and traffic

Revision ID: 0001_create_vhosts_traffic
Revises:
Create Date: 2026-10-17 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_create_vhosts_traffic'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'vhosts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
    )
    op.create_index('ix_vhosts_id', 'vhosts', ['id'])
    op.create_index('ix_vhosts_name', 'vhosts', ['name'], unique=True)

    op.create_table(
        'traffic',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('vhosts_id', sa.Integer(), sa.ForeignKey('vhosts.id'), nullable=False),
        sa.Column('bytes', sa.BigInteger(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.UniqueConstraint('vhosts_id', 'date', name='uq_traffic_vhost_date'),
    )
    op.create_index('ix_traffic_id', 'traffic', ['id'])
    op.create_index('ix_traffic_vhosts_id', 'traffic', ['vhosts_id'])
    op.create_index('ix_traffic_date', 'traffic', ['date'])


def downgrade():
    op.drop_index('ix_traffic_date', table_name='traffic')
    op.drop_index('ix_traffic_vhosts_id', table_name='traffic')
    op.drop_index('ix_traffic_id', table_name='traffic')
    op.drop_table('traffic')
    op.drop_index('ix_vhosts_name', table_name='vhosts')
    op.drop_index('ix_vhosts_id', table_name='vhosts')
    op.drop_table('vhosts')
