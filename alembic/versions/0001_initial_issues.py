"""initial issues schema

Users mirror, issues, and the issue-owned child tables: images, votes,
admin notes and status history.

Revision ID: 0001_initial_issues
Revises:
Create Date: 2026-10-17 12:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_initial_issues'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

user_role = sa.Enum('admin', 'user', name='userrole')
issue_status = sa.Enum('pending', 'in_progress', 'resolved', 'rejected', 'duplicate', name='issuestatus')
issue_priority = sa.Enum('low', 'medium', 'high', 'urgent', name='issuepriority')
issue_category = sa.Enum(
    'pothole', 'street_light', 'drainage', 'traffic_signal', 'road_damage', 'sidewalk',
    'graffiti', 'garbage', 'water_leak', 'park_maintenance', 'noise_complaint', 'other',
    name='issuecategory',
)
vote_kind = sa.Enum('up', 'down', name='votekind')


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('role', user_role, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_name', 'users', ['name'])

    op.create_table(
        'issues',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.String(length=2000), nullable=False),
        sa.Column('category', issue_category, nullable=False),
        sa.Column('priority', issue_priority, nullable=False),
        sa.Column('status', issue_status, nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('address', sa.JSON(), nullable=True),
        sa.Column('reported_by_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('assigned_to_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('is_public', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('estimated_resolution_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ai_analysis', sa.JSON(), nullable=True),
        sa.Column('report_meta', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    for column in ('title', 'category', 'priority', 'status', 'reported_by_id', 'assigned_to_id',
                   'is_public', 'created_at'):
        op.create_index(f'ix_issues_{column}', 'issues', [column])
    op.create_index('ix_issues_lat_lng', 'issues', ['latitude', 'longitude'])

    op.create_table(
        'issue_images',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('issue_id', sa.Integer(), sa.ForeignKey('issues.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('url', sa.String(length=1024), nullable=False),
        sa.Column('storage_key', sa.String(length=500), nullable=False),
        sa.Column('original_name', sa.String(length=255), nullable=True),
        sa.Column('content_type', sa.String(length=100), nullable=False),
        sa.Column('size', sa.Integer(), nullable=False),
        sa.Column('ai_description', sa.String(length=2000), nullable=True),
    )
    op.create_index('ix_issue_images_issue_id', 'issue_images', ['issue_id'])

    op.create_table(
        'issue_votes',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('issue_id', sa.Integer(), sa.ForeignKey('issues.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('kind', vote_kind, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('issue_id', 'user_id', name='uq_issue_vote_voter'),
    )
    op.create_index('ix_issue_votes_issue_id', 'issue_votes', ['issue_id'])
    op.create_index('ix_issue_votes_user_id', 'issue_votes', ['user_id'])

    op.create_table(
        'issue_admin_notes',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('issue_id', sa.Integer(), sa.ForeignKey('issues.id', ondelete='CASCADE'), nullable=False),
        sa.Column('author_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('text', sa.String(length=2000), nullable=False),
        sa.Column('is_public', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_issue_admin_notes_issue_id', 'issue_admin_notes', ['issue_id'])

    op.create_table(
        'issue_status_history',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('issue_id', sa.Integer(), sa.ForeignKey('issues.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', issue_status, nullable=False),
        sa.Column('changed_by_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('changed_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('reason', sa.String(length=500), nullable=True),
    )
    op.create_index('ix_issue_status_history_issue_id', 'issue_status_history', ['issue_id'])
    op.create_index('ix_issue_status_history_changed_at', 'issue_status_history', ['changed_at'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('issue_status_history')
    op.drop_table('issue_admin_notes')
    op.drop_table('issue_votes')
    op.drop_table('issue_images')
    op.drop_table('issues')
    op.drop_table('users')
    bind = op.get_bind()
    for enum in (vote_kind, issue_category, issue_priority, issue_status, user_role):
        enum.drop(bind, checkfirst=True)
