"""Bounded fan-out of per-item reasoner work within a stage."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

from thoughtgraph.errors import ReasonerError

logger = logging.getLogger(__name__)

ItemT = TypeVar("ItemT")
ResultT = TypeVar("ResultT")


@dataclass(frozen=True)
class Branch(Generic[ItemT, ResultT]):
    """Outcome of one fan-out branch: a result or the error that stopped it."""

    item: ItemT
    result: ResultT | None = None
    error: ReasonerError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def fan_out(
    items: Sequence[ItemT],
    worker: Callable[[ItemT], Awaitable[ResultT]],
    max_concurrent: int = 8,
) -> list[Branch[ItemT, ResultT]]:
    """
    Run ``worker`` over ``items`` with at most ``max_concurrent`` in flight.

    A ``ReasonerError`` is captured on its own branch and siblings carry on.
    Any other exception is a bug and is re-raised once every branch has
    settled.

    Returns:
        One branch per item, in input order.
    """
    semaphore = asyncio.Semaphore(max_concurrent)

    async def run(item: ItemT) -> ResultT:
        async with semaphore:
            return await worker(item)

    outcomes = await asyncio.gather(*(run(item) for item in items), return_exceptions=True)

    branches: list[Branch[ItemT, ResultT]] = []
    for item, outcome in zip(items, outcomes):
        if isinstance(outcome, ReasonerError):
            logger.warning(f"Branch {item!r} failed: {outcome}")
            branches.append(Branch(item=item, error=outcome))
        elif isinstance(outcome, BaseException):
            raise outcome
        else:
            branches.append(Branch(item=item, result=outcome))
    return branches
