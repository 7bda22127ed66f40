# deadline.py - Per-call deadlines that never abandon a committed write
"""
Service-call deadlines.

A call wrapped by ``with_deadline`` is cancelled if it overruns the
service's timeout, but only while it has written nothing. Once the store
starts a commit for the call, the deadline stops applying and the call
runs to completion, so timeline events and cascades for a committed
change are still recorded. Such an overrun is logged and the result is
returned normally.

The store calls ``mark_committing()`` right before each commit. The flag
lives on a per-call object held in a context variable; every task the
call spawns copies that context and so shares the same flag.
"""

import asyncio
import contextvars
import functools
import logging
from typing import Optional

from errors import DependencyError

logger = logging.getLogger("worktrack.deadline")


class CallState:
    """Tracks whether a deadline-bound call has started writing"""

    def __init__(self, name: str):
        self.name = name
        self.committing = False


_current_call: contextvars.ContextVar[Optional[CallState]] = contextvars.ContextVar(
    "service_call", default=None
)


def current_call() -> Optional[CallState]:
    return _current_call.get()


def mark_committing() -> None:
    """Called by the store before a commit; pins the current call past its deadline"""
    call = _current_call.get()
    if call is not None:
        call.committing = True


def with_deadline(func):
    """Bound a service call by the instance's timeout, up to its first commit"""
    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        # Nested service calls run under the outer call's deadline
        if not self.timeout or _current_call.get() is not None:
            return await func(self, *args, **kwargs)

        call = CallState(func.__name__)
        token = _current_call.set(call)
        try:
            task = asyncio.ensure_future(func(self, *args, **kwargs))
        finally:
            _current_call.reset(token)

        try:
            done, _ = await asyncio.wait({task}, timeout=self.timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if done:
            return task.result()

        if call.committing:
            logger.warning(
                f"{call.name} exceeded its {self.timeout}s deadline after committing; "
                f"letting it finish"
            )
            return await task

        task.cancel()
        await asyncio.wait({task})
        if not task.cancelled():
            # Finished between the deadline and the cancellation
            return task.result()
        logger.error(f"{call.name} exceeded its {self.timeout}s deadline")
        raise DependencyError(
            f"{call.name} did not finish within {self.timeout}s", code="WT-DEP-003",
        )
    return wrapper
