"""
bid archive: durable audit copy of live-auction bids

Revision ID: 20261019_bid_archive
Revises: None
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '20261019_bid_archive'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'bid_archive',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('auction_id', sa.String(), nullable=True),
        sa.Column('bid_id', sa.String(), nullable=True),
        sa.Column('user_id', sa.String(), nullable=True),
        sa.Column('user_name', sa.String(), nullable=True),
        sa.Column('amount', sa.Float(), nullable=True),
        sa.Column('placed_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
    )
    op.create_index('ix_bid_archive_id', 'bid_archive', ['id'])
    op.create_index('ix_bid_archive_auction_id', 'bid_archive', ['auction_id'])
    op.create_index('ix_bid_archive_bid_id', 'bid_archive', ['bid_id'], unique=True)
    op.create_index('ix_bid_archive_user_id', 'bid_archive', ['user_id'])


def downgrade() -> None:
    op.drop_index('ix_bid_archive_user_id', table_name='bid_archive')
    op.drop_index('ix_bid_archive_bid_id', table_name='bid_archive')
    op.drop_index('ix_bid_archive_auction_id', table_name='bid_archive')
    op.drop_index('ix_bid_archive_id', table_name='bid_archive')
    op.drop_table('bid_archive')
