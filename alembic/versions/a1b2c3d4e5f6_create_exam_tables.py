"""create users, tests, sections, questions, test_results and user_analytics

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'a1b2c3d4e5f6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('full_name', sa.String(255), nullable=True),
        sa.Column('phone_number', sa.String(50), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default='true', nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'tests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('test_date', sa.Date(), nullable=True),
        sa.Column('shift', sa.String(50), nullable=True),
        sa.Column('duration_minutes', sa.Integer(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_tests_id', 'tests', ['id'])

    op.create_table(
        'sections',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('test_id', sa.Integer(), sa.ForeignKey('tests.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.UniqueConstraint('test_id', 'name', name='uq_sections_test_name'),
    )
    op.create_index('ix_sections_id', 'sections', ['id'])
    op.create_index('ix_sections_test_id', 'sections', ['test_id'])

    op.create_table(
        'questions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('section_id', sa.Integer(), sa.ForeignKey('sections.id', ondelete='CASCADE'), nullable=False),
        sa.Column('question_number', sa.Integer(), nullable=False),
        sa.Column('question_text', sa.Text(), nullable=False),
        sa.Column('option_a', sa.Text(), nullable=False),
        sa.Column('option_b', sa.Text(), nullable=False),
        sa.Column('option_c', sa.Text(), nullable=False),
        sa.Column('option_d', sa.Text(), nullable=False),
        sa.Column('option_e', sa.Text(), nullable=True),
        sa.Column('option_f', sa.Text(), nullable=True),
        sa.Column('correct_option', sa.String(1), nullable=False),
        sa.UniqueConstraint('section_id', 'question_number', name='uq_questions_section_number'),
    )
    op.create_index('ix_questions_id', 'questions', ['id'])
    op.create_index('ix_questions_section_id', 'questions', ['section_id'])

    op.create_table(
        'test_results',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('test_id', sa.Integer(), sa.ForeignKey('tests.id'), nullable=False),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('time_taken', sa.Integer(), nullable=False),
        sa.Column('answers', sa.JSON(), nullable=False),
        sa.Column('section_wise_analysis', sa.JSON(), nullable=False),
        sa.Column('total_marks', sa.Float(), nullable=False),
        sa.Column('correct_answers', sa.Integer(), nullable=False),
        sa.Column('wrong_answers', sa.Integer(), nullable=False),
        sa.Column('unattempted', sa.Integer(), nullable=False),
    )
    op.create_index('ix_test_results_user_id', 'test_results', ['user_id'])
    op.create_index('ix_test_results_test_id', 'test_results', ['test_id'])
    op.create_index('idx_results_user_submitted', 'test_results', ['user_id', 'submitted_at'])

    op.create_table(
        'user_analytics',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('total_tests_taken', sa.Integer(), server_default='0', nullable=False),
        sa.Column('average_score', sa.Float(), server_default='0', nullable=False),
        sa.Column('section_wise_average', sa.JSON(), nullable=False),
        sa.Column('improvement_trend', sa.JSON(), nullable=False),
        sa.Column('weak_areas', sa.JSON(), nullable=False),
        sa.Column('strong_areas', sa.JSON(), nullable=False),
        sa.Column('average_time_per_question', sa.Float(), server_default='0', nullable=False),
        sa.Column('section_wise_time', sa.JSON(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_user_analytics_id', 'user_analytics', ['id'])
    op.create_index('ix_user_analytics_user_id', 'user_analytics', ['user_id'], unique=True)


def downgrade() -> None:
    op.drop_table('user_analytics')
    op.drop_table('test_results')
    op.drop_table('questions')
    op.drop_table('sections')
    op.drop_table('tests')
    op.drop_table('users')
