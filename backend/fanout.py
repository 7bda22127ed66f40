# fanout.py - Concurrent per-child reads that tolerate partial failure
import asyncio
import logging
from typing import Awaitable, Callable, Generic, List, Sequence, Tuple, TypeVar

logger = logging.getLogger("worktrack.fanout")

C = TypeVar("C")
R = TypeVar("R")


class FanOutResult(Generic[C, R]):
    """Successful (child, result) pairs in input order, plus failure notes"""

    def __init__(self):
        self.results: List[Tuple[C, R]] = []
        self.warnings: List[str] = []

    def __iter__(self):
        return iter(self.results)

    def __len__(self) -> int:
        return len(self.results)


async def fan_out(
    children: Sequence[C],
    fetch: Callable[[C], Awaitable[R]],
    label: str = "child",
) -> FanOutResult:
    """Run ``fetch`` for every child concurrently.

    A child whose fetch raises is logged and omitted; the rest still
    come back. Cancellation is not swallowed.
    """
    outcome: FanOutResult = FanOutResult()
    if not children:
        return outcome

    results = await asyncio.gather(*(fetch(child) for child in children), return_exceptions=True)
    for child, result in zip(children, results):
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, Exception):
            child_id = getattr(child, "id", child)
            message = f"{label} {child_id} omitted: {result}"
            logger.warning(message)
            outcome.warnings.append(message)
            continue
        outcome.results.append((child, result))
    return outcome
