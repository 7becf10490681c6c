"""
Reasoner abstraction.

The engine never talks to a language model or search provider directly.
It consumes this contract; concrete backends live beside it.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, Field

from thoughtgraph.errors import ReasonerError

logger = logging.getLogger(__name__)


class ReasonMode(str, Enum):
    """How the reasoner should treat a prompt."""

    PLAIN = "plain"
    STRUCTURED = "structured"
    SEARCH = "search"
    CODE = "code"


class StructuredResult(BaseModel):
    """Parsed output of a structured-mode call."""

    data: dict[str, Any] = Field(default_factory=dict, description="Parsed JSON payload")
    raw: str = Field(default="", description="Unparsed model output")

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


ReasonOutput = Union[str, StructuredResult]


class Reasoner(ABC):
    """Abstract base class for reasoning collaborators."""

    #: Upper bound on concurrent calls made by ``reason_batch``.
    max_concurrency: int = 8

    @abstractmethod
    async def reason(self, prompt: str, mode: ReasonMode = ReasonMode.PLAIN) -> ReasonOutput:
        """
        Run one reasoning call.

        Args:
            prompt: Prompt text.
            mode: Output mode. ``STRUCTURED`` returns a ``StructuredResult``,
                every other mode returns text.

        Returns:
            Model or search output.

        Raises:
            ReasonerError: If the call fails after all retries.
        """
        ...

    async def reason_batch(
        self,
        prompts: list[str],
        mode: ReasonMode = ReasonMode.PLAIN,
    ) -> list[ReasonOutput | ReasonerError]:
        """
        Run several prompts concurrently.

        A failing prompt is reported in its own slot as a ``ReasonerError``;
        the other slots are unaffected.

        Args:
            prompts: Prompts to run.
            mode: Output mode shared by all prompts.

        Returns:
            One result or error per prompt, in input order.
        """
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run_one(prompt: str) -> ReasonOutput | ReasonerError:
            async with semaphore:
                try:
                    return await self.reason(prompt, mode)
                except ReasonerError as e:
                    logger.warning(f"Batch element failed: {e}")
                    return e

        return list(await asyncio.gather(*(run_one(p) for p in prompts)))

    async def close(self) -> None:
        """Release any resources held by the backend."""
        return None
