"""WorkTrack initial schema (projects, work items, issues, timeline, attachments)

Revision ID: a1f3c5e7b9d2
Revises:
Create Date: 2026-10-19T09:12:44.318205
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = 'a1f3c5e7b9d2'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TASK_STATUS = ('To Do', 'In Progress', 'Completed')
EVENT_TYPES = (
    'TASK_CREATED', 'MAIN_TASK_UPDATED', 'TASK_UPDATED', 'STATUS_CHANGED',
    'ASSIGNMENT_CHANGED', 'ISSUE_CREATED', 'ISSUE_STATUS_CHANGED', 'ISSUE_DELETED',
    'ATTACHMENT_ADDED', 'ATTACHMENT_DELETED',
)


def upgrade() -> None:
    # --- users ---
    op.create_table(
        'users',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('display_name', sa.String(), nullable=True),
        sa.Column('role', sa.Enum('admin', 'supervisor', 'member', name='userrole'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])

    # --- projects ---
    op.create_table(
        'projects',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('owner_id', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_projects_owner_id', 'projects', ['owner_id'])
    op.create_index('ix_projects_created_at', 'projects', ['created_at'])

    # --- work_items ---
    op.create_table(
        'work_items',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id'), nullable=False),
        sa.Column('parent_id', sa.String(), sa.ForeignKey('work_items.id'), nullable=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('owner_id', sa.String(), nullable=False),
        sa.Column('kind', sa.Enum('standard', 'collection', name='taskkind'), nullable=False),
        sa.Column('status', sa.Enum(*TASK_STATUS, name='taskstatus'), nullable=False),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('amount', sa.Numeric(14, 2), nullable=True),
        sa.Column('reminder_days', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_work_items_project_id', 'work_items', ['project_id'])
    op.create_index('ix_work_items_parent_id', 'work_items', ['parent_id'])
    op.create_index('ix_work_items_owner_id', 'work_items', ['owner_id'])
    op.create_index('ix_work_items_created_at', 'work_items', ['created_at'])
    op.create_index('idx_work_item_project_parent', 'work_items', ['project_id', 'parent_id'])

    op.create_table(
        'work_item_assignments',
        sa.Column('work_item_id', sa.String(), sa.ForeignKey('work_items.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.PrimaryKeyConstraint('work_item_id', 'user_id'),
    )
    op.create_index('ix_work_item_assignments_user_id', 'work_item_assignments', ['user_id'])

    # --- issues ---
    op.create_table(
        'issues',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('task_id', sa.String(), sa.ForeignKey('work_items.id'), nullable=False),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id'), nullable=False),
        sa.Column('owner_id', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('severity', sa.Enum('Normal', 'Critical', name='issueseverity'), nullable=False),
        sa.Column('status', sa.Enum('Open', 'Closed', name='issuestatus'), nullable=False),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_issues_task_id', 'issues', ['task_id'])
    op.create_index('ix_issues_project_id', 'issues', ['project_id'])
    op.create_index('idx_issue_task_status', 'issues', ['task_id', 'status'])

    op.create_table(
        'issue_assignments',
        sa.Column('issue_id', sa.String(), sa.ForeignKey('issues.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.PrimaryKeyConstraint('issue_id', 'user_id'),
    )
    op.create_index('ix_issue_assignments_user_id', 'issue_assignments', ['user_id'])

    # --- timeline_events ---
    op.create_table(
        'timeline_events',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('work_item_id', sa.String(), sa.ForeignKey('work_items.id'), nullable=False),
        sa.Column('event_type', sa.Enum(*EVENT_TYPES, name='timelineeventtype'), nullable=False),
        sa.Column('author_id', sa.String(), nullable=False),
        sa.Column('author_name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('details', sa.JSON(), nullable=False, server_default='{}'),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_timeline_events_work_item_id', 'timeline_events', ['work_item_id'])
    op.create_index('idx_timeline_item_time', 'timeline_events', ['work_item_id', 'timestamp'])

    # --- attachments ---
    op.create_table(
        'attachments',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('work_item_id', sa.String(), sa.ForeignKey('work_items.id'), nullable=False),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id'), nullable=False),
        sa.Column('owner_id', sa.String(), nullable=False),
        sa.Column('owner_name', sa.String(), nullable=False),
        sa.Column('url', sa.String(), nullable=False),
        sa.Column('path', sa.String(), nullable=False),
        sa.Column('filename', sa.String(), nullable=False),
        sa.Column('report_type', sa.Enum('daily-progress', 'completion-proof', name='reporttype'), nullable=False),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_attachments_work_item_id', 'attachments', ['work_item_id'])


def downgrade() -> None:
    op.drop_table('attachments')
    op.drop_table('timeline_events')
    op.drop_table('issue_assignments')
    op.drop_table('issues')
    op.drop_table('work_item_assignments')
    op.drop_table('work_items')
    op.drop_table('projects')
    op.drop_table('users')
    op.execute("DROP TYPE IF EXISTS reporttype")
    op.execute("DROP TYPE IF EXISTS timelineeventtype")
    op.execute("DROP TYPE IF EXISTS issuestatus")
    op.execute("DROP TYPE IF EXISTS issueseverity")
    op.execute("DROP TYPE IF EXISTS taskstatus")
    op.execute("DROP TYPE IF EXISTS taskkind")
    op.execute("DROP TYPE IF EXISTS userrole")
