"""add attempt_id to test_results

Revision ID: b7e2c9d41f03
Revises: a1b2c3d4e5f6
Create Date: 2026-10-19 16:40:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'b7e2c9d41f03'
down_revision: Union[str, None] = 'a1b2c3d4e5f6'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Live-session attempt that produced the row; NULL for direct submissions
    op.add_column('test_results', sa.Column('attempt_id', sa.String(36), nullable=True))
    op.create_index('ix_test_results_attempt_id', 'test_results', ['attempt_id'], unique=True)


def downgrade() -> None:
    op.drop_index('ix_test_results_attempt_id', table_name='test_results')
    op.drop_column('test_results', 'attempt_id')
