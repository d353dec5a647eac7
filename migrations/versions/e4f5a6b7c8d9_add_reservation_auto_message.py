"""add reservation auto message

Revision ID: e4f5a6b7c8d9
Revises: a1b2c3d4e5f6
Create Date: 2025-08-19 09:30:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'e4f5a6b7c8d9'
down_revision = 'a1b2c3d4e5f6'
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table('reservation_settings', schema=None) as batch_op:
        batch_op.add_column(sa.Column('auto_message_enabled', sa.Boolean(), nullable=False, server_default=sa.false()))
        batch_op.add_column(sa.Column('auto_message_text', sa.Text(), nullable=True))


def downgrade():
    with op.batch_alter_table('reservation_settings', schema=None) as batch_op:
        batch_op.drop_column('auto_message_text')
        batch_op.drop_column('auto_message_enabled')
