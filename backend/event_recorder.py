# event_recorder.py - Append-only timeline log per work item
import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from errors import CascadeWarning, DependencyError
from models import TimelineEvent, TimelineEventType, utcnow

logger = logging.getLogger("worktrack.events")

FALLBACK_AUTHOR_NAME = "System"


class MonotonicClock:
    """UTC wall clock that never returns the same instant twice.

    Events appended back to back (an issue reopen and the cascade it
    triggers) must still sort in the order they were written.
    """

    def __init__(self):
        self._last: Optional[datetime] = None
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            current = utcnow()
            if self._last is not None and current <= self._last:
                current = self._last + timedelta(microseconds=1)
            self._last = current
            return current


_clock = MonotonicClock()


class EventRecorder:
    """Writes immutable TimelineEvents.

    The author's display name is resolved at write time so history stays
    stable when a user is later renamed.
    """

    def __init__(self, store, directory, clock: Optional[MonotonicClock] = None):
        self.store = store
        self.directory = directory
        self.clock = clock or _clock

    async def resolve_author_name(self, actor_id: str) -> str:
        try:
            name = await self.directory.display_name(actor_id)
        except Exception as e:
            logger.warning(f"Display name lookup failed for {actor_id}: {e}")
            return FALLBACK_AUTHOR_NAME
        return name or FALLBACK_AUTHOR_NAME

    async def record(
        self,
        item_id: str,
        actor_id: str,
        event_type: TimelineEventType,
        details: Optional[Dict[str, Any]] = None,
        description: str = "",
    ) -> str:
        """Append one event to the item's log and return its id.

        Raises DependencyError when the write itself fails.
        """
        event = TimelineEvent(
            work_item_id=item_id,
            event_type=event_type,
            author_id=actor_id,
            author_name=await self.resolve_author_name(actor_id),
            description=description,
            details=dict(details or {}),
            timestamp=self.clock.now(),
        )
        await self.store.add(event)
        logger.debug(f"Recorded {event_type.value} on {item_id} by {actor_id}")
        return event.id

    async def record_safely(
        self,
        warnings: List[str],
        item_id: str,
        actor_id: str,
        event_type: TimelineEventType,
        details: Optional[Dict[str, Any]] = None,
        description: str = "",
    ) -> Optional[str]:
        """Fire-and-forget variant used after a mutation has committed.

        A failed append never rolls back or fails the mutation; it is
        logged and appended to ``warnings`` instead.
        """
        try:
            return await self.record(item_id, actor_id, event_type, details, description)
        except DependencyError as e:
            warning = CascadeWarning(
                f"{event_type.value} event for {item_id} was not recorded: {e.message}",
                code="WT-CASCADE-002",
            )
            logger.warning(str(warning))
            warnings.append(str(warning))
            return None

    async def list_events(self, item_id: str) -> List[TimelineEvent]:
        """The item's log, oldest first"""
        return await self.store.list_events(item_id)
