"""
Concurrency helpers shared by the fetch and enrichment stages.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Generic, Iterable, List, Optional, TypeVar

T = TypeVar("T")


@dataclass
class Settled(Generic[T]):
    """Outcome of one task: either a value or the exception it raised."""
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def gather_settled(aws: Iterable[Awaitable[T]]) -> List[Settled[T]]:
    """
    Await all tasks concurrently and capture each outcome in order.

    A failing task never cancels its siblings. Cancellation of the caller
    still propagates.
    """
    results: List[Any] = await asyncio.gather(*aws, return_exceptions=True)
    settled: List[Settled[T]] = []
    for res in results:
        if isinstance(res, asyncio.CancelledError):
            raise res
        if isinstance(res, BaseException):
            settled.append(Settled(error=res))
        else:
            settled.append(Settled(value=res))
    return settled
