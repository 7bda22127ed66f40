# timeline.py - Nested, chronologically ordered views over per-item logs
"""
Timeline Aggregator.

A main task's timeline is its own events plus one collapsible group per
sub-task with history. Each group carries the sub-task's full event list
and sorts by its most recent event, so "15 events on sub-task X" renders
as a single row that still expands in order. Project timelines repeat
this for every main task and sort by latest activity.

Both levels use the same fan-out over children; a child whose history
cannot be read is logged and left out rather than failing the view.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from fanout import fan_out
from models import TimelineEvent, WorkItem


def _newest_first(events: List[TimelineEvent]) -> List[TimelineEvent]:
    return sorted(events, key=lambda e: (e.timestamp, e.id), reverse=True)


def event_to_dict(event: TimelineEvent) -> dict:
    return {
        "id": event.id,
        "work_item_id": event.work_item_id,
        "type": event.event_type.value,
        "author": {"id": event.author_id, "name": event.author_name},
        "description": event.description,
        "details": event.details or {},
        "timestamp": event.timestamp.isoformat(),
    }


@dataclass
class AggregatedEvent:
    """Either one main-task event, or one sub-task's whole history"""
    timestamp: datetime
    event: Optional[TimelineEvent] = None
    sub_task_id: Optional[str] = None
    sub_task_name: Optional[str] = None
    events: List[TimelineEvent] = field(default_factory=list)

    @property
    def is_group(self) -> bool:
        return self.event is None

    @property
    def event_count(self) -> int:
        return len(self.events) if self.is_group else 1

    @classmethod
    def single(cls, event: TimelineEvent) -> "AggregatedEvent":
        return cls(timestamp=event.timestamp, event=event)

    @classmethod
    def group(cls, sub_task: WorkItem, events: List[TimelineEvent]) -> "AggregatedEvent":
        ordered = _newest_first(events)
        return cls(
            timestamp=ordered[0].timestamp,
            sub_task_id=sub_task.id,
            sub_task_name=sub_task.name,
            events=ordered,
        )

    def sort_key(self):
        tiebreak = self.event.id if self.event is not None else self.sub_task_id
        return (self.timestamp, tiebreak)

    def to_dict(self) -> dict:
        if not self.is_group:
            return {"kind": "event", "timestamp": self.timestamp.isoformat(), "event": event_to_dict(self.event)}
        return {
            "kind": "sub_task",
            "timestamp": self.timestamp.isoformat(),
            "sub_task": {"id": self.sub_task_id, "name": self.sub_task_name},
            "event_count": self.event_count,
            "events": [event_to_dict(e) for e in self.events],
        }


@dataclass
class MainTaskTimeline:
    """One main task and its aggregated timeline, for project views"""
    task: WorkItem
    entries: List[AggregatedEvent]
    warnings: List[str] = field(default_factory=list)

    @property
    def latest_activity(self) -> Optional[datetime]:
        return self.entries[0].timestamp if self.entries else None

    def to_dict(self) -> dict:
        return {
            "main_task": {
                "id": self.task.id,
                "name": self.task.name,
                "kind": self.task.kind.value,
                "status": self.task.status.value,
            },
            "latest_activity": self.latest_activity.isoformat() if self.latest_activity else None,
            "entries": [entry.to_dict() for entry in self.entries],
            "warnings": self.warnings,
        }


class TimelineAggregator:
    def __init__(self, store):
        self.store = store

    async def aggregate_for_work_item(self, main_task_id: str) -> List[AggregatedEvent]:
        return (await self.timeline_for(await self.store.get_work_item(main_task_id))).entries

    async def timeline_for(self, task: WorkItem) -> MainTaskTimeline:
        """Merge the task's own events with its sub-task groups, newest first"""
        own_events = await self.store.list_events(task.id)
        sub_tasks = await self.store.list_children(task.id)
        histories = await fan_out(sub_tasks, lambda sub: self.store.list_events(sub.id), label="sub-task")

        entries = [AggregatedEvent.single(e) for e in own_events]
        entries.extend(
            AggregatedEvent.group(sub_task, events)
            for sub_task, events in histories
            if events
        )
        entries.sort(key=AggregatedEvent.sort_key, reverse=True)
        return MainTaskTimeline(task=task, entries=entries, warnings=histories.warnings)

    async def aggregate_for_project(self, project_id: str) -> List[MainTaskTimeline]:
        """Every main task's timeline, most recently active first"""
        await self.store.get_project(project_id)
        main_tasks = await self.store.list_main_tasks(project_id)
        timelines = await fan_out(main_tasks, self.timeline_for, label="main task")

        active = [t for _, t in timelines if t.entries]
        idle = [t for _, t in timelines if not t.entries]
        active.sort(key=lambda t: (t.latest_activity, t.task.id), reverse=True)
        return active + idle
