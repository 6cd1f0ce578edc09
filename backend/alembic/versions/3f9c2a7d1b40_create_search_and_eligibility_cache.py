"""create_search_and_eligibility_cache

Revision ID: 3f9c2a7d1b40
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB


revision: str = '3f9c2a7d1b40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- eligibility_cache (per-trial eligibility detail, 7-day TTL in app code) ---
    op.create_table('eligibility_cache',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('nct_id', sa.String(20), nullable=False),
        sa.Column('eligibility_criteria', sa.Text),
        sa.Column('minimum_age', sa.String(30)),
        sa.Column('maximum_age', sa.String(30)),
        sa.Column('sex', sa.String(10)),
        sa.Column('healthy_volunteers', sa.String(10)),
        sa.Column('fetched_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_eligibility_cache_nct_id', 'eligibility_cache', ['nct_id'], unique=True)

    # --- searches (write-once share links) ---
    op.create_table('searches',
        sa.Column('id', sa.String(32), primary_key=True),
        sa.Column('mode', sa.String(10), nullable=False),
        sa.Column('condition', sa.Text, nullable=False),
        sa.Column('age', sa.Integer, nullable=False),
        sa.Column('location', sa.Text, nullable=False, server_default=''),
        sa.Column('medications', JSONB),
        sa.Column('additional_info', sa.Text),
        sa.Column('results', JSONB, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_searches_created_at', 'searches', ['created_at'])


def downgrade() -> None:
    op.drop_index('ix_searches_created_at', table_name='searches')
    op.drop_table('searches')
    op.drop_index('ix_eligibility_cache_nct_id', table_name='eligibility_cache')
    op.drop_table('eligibility_cache')
