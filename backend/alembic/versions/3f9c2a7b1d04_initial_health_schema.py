"""Initial health schema: symptoms, episodes, assessments, conversations

Revision ID: 3f9c2a7b1d04
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
import sqlmodel
from alembic import op

# revision identifiers, used by Alembic.
revision: str = '3f9c2a7b1d04'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_INDEXES = {
    'symptom': ['user_id', 'name'],
    'episode': ['symptom_id', 'user_id'],
    'assessment': ['user_id', 'conversation_id'],
    'assessment_episode_link': ['assessment_id', 'episode_id'],
    'negative_finding': ['user_id'],
    'conversation': ['user_id'],
    'chat_message': ['conversation_id'],
}


def _str(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sqlmodel.sql.sqltypes.AutoString(), nullable=nullable)


def upgrade() -> None:
    """Create all health chat tables."""
    op.create_table(
        'symptom',
        _str('id'),
        _str('user_id'),
        _str('name'),
        _str('description', nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_table(
        'episode',
        _str('id'),
        _str('symptom_id'),
        _str('user_id'),
        _str('stage'),
        _str('status'),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('severity', sa.Integer(), nullable=True),
        _str('location', nullable=True),
        _str('frequency', nullable=True),
        sa.Column('triggers', sa.JSON(), nullable=True),
        sa.Column('relievers', sa.JSON(), nullable=True),
        _str('pattern', nullable=True),
        sa.Column('timeline', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_table(
        'assessment',
        _str('id'),
        _str('user_id'),
        _str('conversation_id'),
        _str('hypothesis'),
        sa.Column('confidence', sa.Float(), nullable=False, server_default='0.0'),
        sa.Column('differentials', sa.JSON(), nullable=True),
        _str('reasoning'),
        _str('recommended_action'),
        sa.Column('negative_finding_ids', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_table(
        'assessment_episode_link',
        _str('id'),
        _str('assessment_id'),
        _str('episode_id'),
        sa.Column('weight', sa.Float(), nullable=False, server_default='1.0'),
        _str('reasoning', nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_table(
        'negative_finding',
        _str('id'),
        _str('user_id'),
        _str('symptom_name'),
        _str('episode_id', nullable=True),
        sa.Column('reported_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_table(
        'conversation',
        _str('id'),
        _str('user_id'),
        _str('title'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_table(
        'chat_message',
        _str('id'),
        _str('conversation_id'),
        _str('role'),
        _str('content'),
        sa.Column('status_information', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    for table, columns in _INDEXES.items():
        for column in columns:
            op.create_index(op.f(f'ix_{table}_{column}'), table, [column], unique=False)


def downgrade() -> None:
    """Drop all health chat tables."""
    for table, columns in _INDEXES.items():
        for column in columns:
            op.drop_index(op.f(f'ix_{table}_{column}'), table_name=table)
    for table in reversed(list(_INDEXES)):
        op.drop_table(table)
