# store.py - Work-item store and user directory over SQLAlchemy asyncio
"""
Narrow persistence interface the engine talks to.

Each call opens its own short-lived session and commits on its own, so
writes are per-record atomic and fan-out reads can run concurrently.
There are no multi-call transactions; two concurrent status writes on
the same item resolve last-write-wins.
"""

import functools
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from deadline import mark_committing
from errors import DependencyError, NotFoundError
from models import (
    Attachment, Issue, IssueAssignment, IssueStatus, Project, TimelineEvent,
    User, WorkItem, WorkItemAssignment, utcnow,
)

logger = logging.getLogger("worktrack.store")


@dataclass
class DeletedTree:
    """What a cascading delete removed; blobs still need removing"""
    item_ids: List[str] = field(default_factory=list)
    attachment_paths: List[str] = field(default_factory=list)


def _store_call(func):
    """Translate driver/ORM failures into DependencyError"""
    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func(self, *args, **kwargs)
        except SQLAlchemyError as e:
            logger.error(f"Store call {func.__name__} failed: {e}")
            raise DependencyError(f"Work-item store call failed: {func.__name__}") from e
    return wrapper


async def _commit(session) -> None:
    mark_committing()
    await session.commit()


class WorkItemStore:
    """CRUD by id, children by parent, and assignee-membership queries"""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    # --- Generic ---

    @_store_call
    async def add(self, record):
        async with self._session_factory() as session:
            session.add(record)
            await _commit(session)
            return record

    async def _get(self, model, record_id: str, label: str):
        async with self._session_factory() as session:
            record = await session.get(model, record_id)
        if record is None:
            raise NotFoundError(label, record_id)
        return record

    # --- Projects ---

    @_store_call
    async def get_project(self, project_id: str) -> Project:
        return await self._get(Project, project_id, "Project")

    # --- Work items ---

    @_store_call
    async def get_work_item(self, item_id: str) -> WorkItem:
        return await self._get(WorkItem, item_id, "Task")

    @_store_call
    async def list_main_tasks(self, project_id: str) -> List[WorkItem]:
        stmt = (
            select(WorkItem)
            .where(WorkItem.project_id == project_id, WorkItem.parent_id.is_(None))
            .order_by(WorkItem.created_at.desc())
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    @_store_call
    async def list_children(self, parent_id: str) -> List[WorkItem]:
        stmt = (
            select(WorkItem)
            .where(WorkItem.parent_id == parent_id)
            .order_by(WorkItem.created_at.asc())
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    @_store_call
    async def list_project_tasks(self, project_id: str) -> List[WorkItem]:
        """Every work item in the project, main tasks and sub-tasks alike"""
        stmt = (
            select(WorkItem)
            .where(WorkItem.project_id == project_id)
            .order_by(WorkItem.created_at.asc())
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    @_store_call
    async def list_assigned_sub_tasks(self, user_id: str) -> List[WorkItem]:
        stmt = (
            select(WorkItem)
            .join(WorkItemAssignment, WorkItemAssignment.work_item_id == WorkItem.id)
            .where(WorkItemAssignment.user_id == user_id, WorkItem.parent_id.is_not(None))
            .order_by(WorkItem.created_at.desc())
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    @_store_call
    async def update_work_item(self, item_id: str, **fields) -> WorkItem:
        async with self._session_factory() as session:
            item = await session.get(WorkItem, item_id)
            if item is None:
                raise NotFoundError("Task", item_id)
            for name, value in fields.items():
                setattr(item, name, value)
            item.updated_at = utcnow()
            await _commit(session)
            return item

    @_store_call
    async def set_work_item_assignees(self, item_id: str, user_ids: Iterable[str]) -> WorkItem:
        async with self._session_factory() as session:
            item = await session.get(WorkItem, item_id)
            if item is None:
                raise NotFoundError("Task", item_id)
            existing = {a.user_id: a for a in item.assignments}
            item.assignments = [
                existing.get(uid) or WorkItemAssignment(user_id=uid)
                for uid in dict.fromkeys(user_ids)
            ]
            item.updated_at = utcnow()
            await _commit(session)
            return item

    @_store_call
    async def set_status_with_attachment(
        self, item_id: str, status, attachment: Optional[Attachment] = None,
    ) -> WorkItem:
        """Write the status and (optionally) its proof metadata in one commit"""
        async with self._session_factory() as session:
            item = await session.get(WorkItem, item_id)
            if item is None:
                raise NotFoundError("Task", item_id)
            item.status = status
            item.updated_at = utcnow()
            if attachment is not None:
                session.add(attachment)
            await _commit(session)
            return item

    @_store_call
    async def delete_work_item_tree(self, item_id: str) -> DeletedTree:
        """Delete a work item, its sub-tasks, and everything hanging off them"""
        async with self._session_factory() as session:
            item = await session.get(WorkItem, item_id)
            if item is None:
                raise NotFoundError("Task", item_id)
            child_ids = list((await session.execute(
                select(WorkItem.id).where(WorkItem.parent_id == item_id)
            )).scalars().all())
            deleted = await self._delete_items(session, child_ids + [item_id], child_ids)
            await _commit(session)
        return deleted

    @_store_call
    async def delete_project_tree(self, project_id: str) -> DeletedTree:
        async with self._session_factory() as session:
            project = await session.get(Project, project_id)
            if project is None:
                raise NotFoundError("Project", project_id)
            rows = (await session.execute(
                select(WorkItem.id, WorkItem.parent_id).where(WorkItem.project_id == project_id)
            )).all()
            all_ids = [row.id for row in rows]
            child_ids = [row.id for row in rows if row.parent_id is not None]
            deleted = await self._delete_items(session, all_ids, child_ids)
            await session.delete(project)
            await _commit(session)
        return deleted

    @staticmethod
    async def _delete_items(session, item_ids: List[str], child_ids: List[str]) -> DeletedTree:
        if not item_ids:
            return DeletedTree()
        paths = list((await session.execute(
            select(Attachment.path).where(Attachment.work_item_id.in_(item_ids))
        )).scalars().all())
        issue_ids = select(Issue.id).where(Issue.task_id.in_(item_ids))
        await session.execute(delete(IssueAssignment).where(IssueAssignment.issue_id.in_(issue_ids)))
        await session.execute(delete(Issue).where(Issue.task_id.in_(item_ids)))
        await session.execute(delete(TimelineEvent).where(TimelineEvent.work_item_id.in_(item_ids)))
        await session.execute(delete(Attachment).where(Attachment.work_item_id.in_(item_ids)))
        await session.execute(
            delete(WorkItemAssignment).where(WorkItemAssignment.work_item_id.in_(item_ids))
        )
        # Children before parents so the self-referencing FK holds
        if child_ids:
            await session.execute(delete(WorkItem).where(WorkItem.id.in_(child_ids)))
        parent_ids = [i for i in item_ids if i not in set(child_ids)]
        if parent_ids:
            await session.execute(delete(WorkItem).where(WorkItem.id.in_(parent_ids)))
        return DeletedTree(item_ids=list(item_ids), attachment_paths=paths)

    # --- Issues ---

    @_store_call
    async def get_issue(self, issue_id: str) -> Issue:
        return await self._get(Issue, issue_id, "Issue")

    @_store_call
    async def list_issues(self, task_id: str) -> List[Issue]:
        stmt = select(Issue).where(Issue.task_id == task_id).order_by(Issue.created_at.desc())
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    @_store_call
    async def list_project_issues(self, project_id: str) -> List[Issue]:
        stmt = select(Issue).where(Issue.project_id == project_id).order_by(Issue.created_at.asc())
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    @_store_call
    async def count_open_issues(self, task_id: str) -> int:
        stmt = select(func.count(Issue.id)).where(
            Issue.task_id == task_id, Issue.status == IssueStatus.OPEN,
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar() or 0

    @_store_call
    async def update_issue(self, issue_id: str, **fields) -> Issue:
        async with self._session_factory() as session:
            issue = await session.get(Issue, issue_id)
            if issue is None:
                raise NotFoundError("Issue", issue_id)
            for name, value in fields.items():
                setattr(issue, name, value)
            issue.updated_at = utcnow()
            await _commit(session)
            return issue

    @_store_call
    async def set_issue_assignees(self, issue_id: str, user_ids: Iterable[str]) -> Issue:
        async with self._session_factory() as session:
            issue = await session.get(Issue, issue_id)
            if issue is None:
                raise NotFoundError("Issue", issue_id)
            existing = {a.user_id: a for a in issue.assignments}
            issue.assignments = [
                existing.get(uid) or IssueAssignment(user_id=uid)
                for uid in dict.fromkeys(user_ids)
            ]
            issue.updated_at = utcnow()
            await _commit(session)
            return issue

    @_store_call
    async def delete_issue(self, issue_id: str) -> None:
        async with self._session_factory() as session:
            issue = await session.get(Issue, issue_id)
            if issue is None:
                raise NotFoundError("Issue", issue_id)
            await session.delete(issue)
            await _commit(session)

    # --- Attachments ---

    @_store_call
    async def get_attachment(self, attachment_id: str) -> Attachment:
        return await self._get(Attachment, attachment_id, "Attachment")

    @_store_call
    async def list_attachments(self, work_item_id: str) -> List[Attachment]:
        stmt = (
            select(Attachment)
            .where(Attachment.work_item_id == work_item_id)
            .order_by(Attachment.created_at.desc())
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    @_store_call
    async def delete_attachment(self, attachment_id: str) -> None:
        async with self._session_factory() as session:
            attachment = await session.get(Attachment, attachment_id)
            if attachment is None:
                raise NotFoundError("Attachment", attachment_id)
            await session.delete(attachment)
            await _commit(session)

    # --- Timeline ---

    @_store_call
    async def list_events(self, work_item_id: str) -> List[TimelineEvent]:
        """Event log for one work item, oldest first"""
        stmt = (
            select(TimelineEvent)
            .where(TimelineEvent.work_item_id == work_item_id)
            .order_by(TimelineEvent.timestamp.asc())
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())


class UserDirectory:
    """Identity/display-name resolver backed by the users table"""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    @_store_call
    async def display_name(self, user_id: str) -> Optional[str]:
        async with self._session_factory() as session:
            user = await session.get(User, user_id)
        if user is None:
            return None
        return user.display_name or None

    @_store_call
    async def get_user(self, user_id: str) -> User:
        async with self._session_factory() as session:
            user = await session.get(User, user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    @_store_call
    async def set_display_name(self, user_id: str, display_name: str) -> User:
        async with self._session_factory() as session:
            user = await session.get(User, user_id)
            if user is None:
                raise NotFoundError("User", user_id)
            user.display_name = display_name
            await _commit(session)
            return user

    @_store_call
    async def add_user(self, user: User) -> User:
        async with self._session_factory() as session:
            session.add(user)
            await _commit(session)
            return user
