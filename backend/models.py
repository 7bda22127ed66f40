# models.py - Database models for the WorkTrack engine
# - UUID string primary keys everywhere
# - 3-tier role system (admin, supervisor, member)
# - Work items unify main tasks and sub-tasks (parent_id null => main task)
# - Append-only timeline events per work item
# - Assignee sets stored as association rows so they can be queried

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, JSON, Integer, Numeric, Float,
    Enum as SQLEnum, ForeignKey, Text, Index, TypeDecorator,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


class UTCDateTime(TypeDecorator):
    """Timezone-aware DateTime that always comes back as UTC.

    SQLite drops tzinfo on the way out; comparing those values against
    freshly created aware datetimes would raise.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


# ============================================================
# ENUMS
# ============================================================

class UserRole(str, PyEnum):
    ADMIN = "admin"
    SUPERVISOR = "supervisor"
    MEMBER = "member"


class TaskStatus(str, PyEnum):
    TODO = "To Do"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"


class TaskKind(str, PyEnum):
    STANDARD = "standard"
    COLLECTION = "collection"


class ProjectStatus(str, PyEnum):
    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"


class IssueSeverity(str, PyEnum):
    NORMAL = "Normal"
    CRITICAL = "Critical"


class IssueStatus(str, PyEnum):
    OPEN = "Open"
    CLOSED = "Closed"


class TimelineEventType(str, PyEnum):
    TASK_CREATED = "TASK_CREATED"
    MAIN_TASK_UPDATED = "MAIN_TASK_UPDATED"
    TASK_UPDATED = "TASK_UPDATED"
    STATUS_CHANGED = "STATUS_CHANGED"
    ASSIGNMENT_CHANGED = "ASSIGNMENT_CHANGED"
    ISSUE_CREATED = "ISSUE_CREATED"
    ISSUE_STATUS_CHANGED = "ISSUE_STATUS_CHANGED"
    ISSUE_DELETED = "ISSUE_DELETED"
    ATTACHMENT_ADDED = "ATTACHMENT_ADDED"
    ATTACHMENT_DELETED = "ATTACHMENT_DELETED"


class ReportType(str, PyEnum):
    DAILY_PROGRESS = "daily-progress"
    COMPLETION_PROOF = "completion-proof"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def _enum_column(enum_cls, **kwargs):
    # Persist the human-readable values ("In Progress"), not member names
    return Column(SQLEnum(enum_cls, values_callable=_enum_values), **kwargs)


# ============================================================
# USERS
# ============================================================

class User(Base):
    """Display-name directory for actors; credentials live elsewhere"""
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    email = Column(String, unique=True, nullable=False, index=True)
    display_name = Column(String, nullable=True)
    role = _enum_column(UserRole, default=UserRole.MEMBER, nullable=False, index=True)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)


# ============================================================
# PROJECTS
# ============================================================

class Project(Base):
    __tablename__ = "projects"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    owner_id = Column(String, nullable=False, index=True)
    created_at = Column(UTCDateTime, default=utcnow, index=True)
    updated_at = Column(UTCDateTime, default=utcnow)


# ============================================================
# WORK ITEMS (main tasks + sub-tasks)
# ============================================================

class WorkItem(Base):
    """A main task (no parent) or a sub-task (parent is a main task)"""
    __tablename__ = "work_items"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id"), nullable=False, index=True)
    parent_id = Column(String, ForeignKey("work_items.id"), nullable=True, index=True)

    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    owner_id = Column(String, nullable=False, index=True)
    kind = _enum_column(TaskKind, default=TaskKind.STANDARD, nullable=False)
    # Authoritative for sub-tasks and collection tasks only
    status = _enum_column(TaskStatus, default=TaskStatus.TODO, nullable=False)
    due_date = Column(UTCDateTime, nullable=True)

    # Collection tasks
    amount = Column(Numeric(14, 2), nullable=True)
    reminder_days = Column(Integer, nullable=True)

    created_at = Column(UTCDateTime, default=utcnow, index=True)
    updated_at = Column(UTCDateTime, default=utcnow)

    assignments = relationship(
        "WorkItemAssignment", lazy="selectin", cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_work_item_project_parent", "project_id", "parent_id"),
    )

    @property
    def is_main_task(self) -> bool:
        return self.parent_id is None

    @property
    def is_collection(self) -> bool:
        return self.kind == TaskKind.COLLECTION

    @property
    def assignee_ids(self) -> set:
        return {a.user_id for a in self.assignments}


class WorkItemAssignment(Base):
    __tablename__ = "work_item_assignments"

    work_item_id = Column(
        String, ForeignKey("work_items.id", ondelete="CASCADE"), primary_key=True,
    )
    user_id = Column(String, primary_key=True, index=True)


# ============================================================
# ISSUES
# ============================================================

class Issue(Base):
    """A defect or blocker raised against a sub-task"""
    __tablename__ = "issues"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("work_items.id"), nullable=False, index=True)
    project_id = Column(String, ForeignKey("projects.id"), nullable=False, index=True)
    owner_id = Column(String, nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    severity = _enum_column(IssueSeverity, default=IssueSeverity.NORMAL, nullable=False)
    status = _enum_column(IssueStatus, default=IssueStatus.OPEN, nullable=False)
    due_date = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow)

    assignments = relationship(
        "IssueAssignment", lazy="selectin", cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_issue_task_status", "task_id", "status"),
    )

    @property
    def assignee_ids(self) -> set:
        return {a.user_id for a in self.assignments}


class IssueAssignment(Base):
    __tablename__ = "issue_assignments"

    issue_id = Column(String, ForeignKey("issues.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String, primary_key=True, index=True)


# ============================================================
# TIMELINE (append-only)
# ============================================================

class TimelineEvent(Base):
    """Immutable record of one state change on a work item"""
    __tablename__ = "timeline_events"

    id = Column(String, primary_key=True, default=new_uuid)
    work_item_id = Column(String, ForeignKey("work_items.id"), nullable=False, index=True)
    event_type = _enum_column(TimelineEventType, nullable=False)
    author_id = Column(String, nullable=False)
    author_name = Column(String, nullable=False)  # Resolved at write time
    description = Column(Text, nullable=False, default="")
    details = Column(JSON, nullable=False, default=dict)
    timestamp = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_timeline_item_time", "work_item_id", "timestamp"),
    )


# ============================================================
# ATTACHMENTS
# ============================================================

class Attachment(Base):
    """Photo report metadata; the bytes live in the attachment store"""
    __tablename__ = "attachments"

    id = Column(String, primary_key=True, default=new_uuid)
    work_item_id = Column(String, ForeignKey("work_items.id"), nullable=False, index=True)
    project_id = Column(String, ForeignKey("projects.id"), nullable=False)
    owner_id = Column(String, nullable=False)
    owner_name = Column(String, nullable=False)
    url = Column(String, nullable=False)
    path = Column(String, nullable=False)
    filename = Column(String, nullable=False)
    report_type = _enum_column(ReportType, default=ReportType.DAILY_PROGRESS, nullable=False)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow)
