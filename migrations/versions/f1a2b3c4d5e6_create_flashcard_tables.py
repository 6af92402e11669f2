"""create decks, cards, review_logs and ai_card_contents tables

Revision ID: f1a2b3c4d5e6
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'f1a2b3c4d5e6'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the flashcard schema."""
    op.create_table('decks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name')
    )

    op.create_table('cards',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('deck_id', sa.Integer(), nullable=False),
        sa.Column('front', sa.Text(), nullable=False),
        sa.Column('back', sa.Text(), nullable=False),
        sa.Column('interval', sa.Integer(), nullable=True, server_default='0'),
        sa.Column('ease_factor', sa.Float(), nullable=True, server_default='2.5'),
        sa.Column('next_review', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['deck_id'], ['decks.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_cards_deck_id', 'cards', ['deck_id'])
    op.create_index('ix_cards_next_review', 'cards', ['next_review'])

    op.create_table('review_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('card_id', sa.Integer(), nullable=False),
        sa.Column('rating', sa.String(length=8), nullable=False),
        sa.Column('interval_before', sa.Integer(), nullable=False),
        sa.Column('interval_after', sa.Integer(), nullable=False),
        sa.Column('ease_factor_before', sa.Float(), nullable=False),
        sa.Column('ease_factor_after', sa.Float(), nullable=False),
        sa.Column('next_review', sa.DateTime(), nullable=False),
        sa.Column('reviewed_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['card_id'], ['cards.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_review_logs_card_id', 'review_logs', ['card_id'])

    op.create_table('ai_card_contents',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('card_id', sa.Integer(), nullable=False),
        sa.Column('content_type', sa.String(length=16), nullable=False),
        sa.Column('language', sa.String(length=16), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['card_id'], ['cards.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('card_id', 'content_type', 'language', name='uq_ai_content')
    )
    op.create_index('ix_ai_card_contents_card_id', 'ai_card_contents', ['card_id'])


def downgrade() -> None:
    """Drop the flashcard schema."""
    op.drop_index('ix_ai_card_contents_card_id', table_name='ai_card_contents')
    op.drop_table('ai_card_contents')
    op.drop_index('ix_review_logs_card_id', table_name='review_logs')
    op.drop_table('review_logs')
    op.drop_index('ix_cards_next_review', table_name='cards')
    op.drop_index('ix_cards_deck_id', table_name='cards')
    op.drop_table('cards')
    op.drop_table('decks')
