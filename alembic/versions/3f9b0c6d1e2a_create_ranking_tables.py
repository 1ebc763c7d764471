"""Create ranking_runs and scored_connections

Revision ID: 3f9b0c6d1e2a
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9b0c6d1e2a'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('ranking_runs',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('owner_id', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('total_connections', sa.Integer(), nullable=False),
        sa.Column('phase1_processed', sa.Integer(), nullable=False),
        sa.Column('phase2_total', sa.Integer(), nullable=False),
        sa.Column('phase2_processed', sa.Integer(), nullable=False),
        sa.Column('phase2_failed', sa.Integer(), nullable=False),
        sa.Column('external_calls', sa.Integer(), nullable=False),
        sa.Column('estimated_cost', sa.Float(), nullable=False),
        sa.Column('max_budget', sa.Float(), nullable=True),
        sa.Column('tier_protected', sa.Integer(), nullable=False),
        sa.Column('tier_definite_keep', sa.Integer(), nullable=False),
        sa.Column('tier_strong_keep', sa.Integer(), nullable=False),
        sa.Column('tier_borderline', sa.Integer(), nullable=False),
        sa.Column('tier_likely_remove', sa.Integer(), nullable=False),
        sa.Column('tier_definite_remove', sa.Integer(), nullable=False),
        sa.Column('criteria', sa.JSON(), nullable=True),
        sa.Column('protected_keywords', sa.JSON(), nullable=True),
        sa.Column('pause_reason', sa.Text(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('phase1_completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('phase2_completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_ranking_runs_owner_id', 'ranking_runs', ['owner_id'])

    op.create_table('scored_connections',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('run_id', sa.Text(), nullable=False),
        sa.Column('first_name', sa.Text(), nullable=True),
        sa.Column('last_name', sa.Text(), nullable=True),
        sa.Column('profile_url', sa.Text(), nullable=True),
        sa.Column('email', sa.Text(), nullable=True),
        sa.Column('company', sa.Text(), nullable=True),
        sa.Column('position', sa.Text(), nullable=True),
        sa.Column('connected_on', sa.Text(), nullable=True),
        sa.Column('title_score', sa.Integer(), nullable=False),
        sa.Column('company_score', sa.Integer(), nullable=False),
        sa.Column('recency_score', sa.Integer(), nullable=False),
        sa.Column('deterministic_score', sa.Integer(), nullable=False),
        sa.Column('ai_score', sa.Integer(), nullable=True),
        sa.Column('total_score', sa.Integer(), nullable=False),
        sa.Column('tier', sa.Text(), nullable=False),
        sa.Column('is_protected', sa.Boolean(), nullable=False),
        sa.Column('protected_reason', sa.Text(), nullable=True),
        sa.Column('enrichment_status', sa.Text(), nullable=False),
        sa.Column('enrichment_error', sa.Text(), nullable=True),
        sa.Column('claimed_by', sa.Text(), nullable=True),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ai_reasoning', sa.Text(), nullable=True),
        sa.Column('ai_geography', sa.Text(), nullable=True),
        sa.Column('ai_industry', sa.Text(), nullable=True),
        sa.Column('ai_company_size', sa.Text(), nullable=True),
        sa.Column('grounding_data', sa.JSON(), nullable=True),
        sa.Column('user_override', sa.Text(), nullable=True),
        sa.Column('rank_position', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['run_id'], ['ranking_runs.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_scored_connections_run_enrichment', 'scored_connections', ['run_id', 'enrichment_status'])
    op.create_index('ix_scored_connections_run_tier', 'scored_connections', ['run_id', 'tier'])
    op.create_index('ix_scored_connections_run_rank', 'scored_connections', ['run_id', 'rank_position'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_scored_connections_run_rank', table_name='scored_connections')
    op.drop_index('ix_scored_connections_run_tier', table_name='scored_connections')
    op.drop_index('ix_scored_connections_run_enrichment', table_name='scored_connections')
    op.drop_table('scored_connections')
    op.drop_index('ix_ranking_runs_owner_id', table_name='ranking_runs')
    op.drop_table('ranking_runs')
