"""create generation_jobs, job_updates and pages tables

Revision ID: 5e1f0c2a9b7d
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '5e1f0c2a9b7d'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'generation_jobs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_prompt', sa.Text(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('progress', sa.JSON(), nullable=False),
        sa.Column('result', sa.JSON(), nullable=True),
        sa.Column('page_slug', sa.String(length=64), nullable=True),
        sa.Column('error_message', sa.String(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    # Reaper scans non-terminal jobs by last write
    op.create_index('ix_generation_jobs_status_updated_at', 'generation_jobs', ['status', 'updated_at'], unique=False)

    op.create_table(
        'job_updates',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('job_id', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('stage', sa.String(length=32), nullable=False),
        sa.Column('message', sa.String(), nullable=False),
        sa.Column('percent', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['job_id'], ['generation_jobs.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_job_updates_job_id'), 'job_updates', ['job_id'], unique=False)

    op.create_table(
        'pages',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('slug', sa.String(length=64), nullable=False),
        sa.Column('page_spec', sa.JSON(), nullable=False),
        sa.Column('copy_spec', sa.JSON(), nullable=False),
        sa.Column('theme_tokens', sa.JSON(), nullable=True),
        sa.Column('published', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('job_id', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['job_id'], ['generation_jobs.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_pages_slug'), 'pages', ['slug'], unique=True)
    op.create_index(op.f('ix_pages_job_id'), 'pages', ['job_id'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_pages_job_id'), table_name='pages')
    op.drop_index(op.f('ix_pages_slug'), table_name='pages')
    op.drop_table('pages')
    op.drop_index(op.f('ix_job_updates_job_id'), table_name='job_updates')
    op.drop_table('job_updates')
    op.drop_index('ix_generation_jobs_status_updated_at', table_name='generation_jobs')
    op.drop_table('generation_jobs')
