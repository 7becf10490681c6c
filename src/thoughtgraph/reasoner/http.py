"""
HTTP reasoner adapter.

Talks to a remote reasoning/search service that accepts
``POST /reason`` with ``{"prompt": ..., "mode": ...}`` and answers with
``{"text": ...}`` or ``{"data": {...}}``.
"""

import logging
from typing import Any

import httpx

from thoughtgraph.config import get_settings
from thoughtgraph.errors import ReasonerError
from thoughtgraph.reasoner.base import Reasoner, ReasonMode, ReasonOutput, StructuredResult
from thoughtgraph.reasoner.json_repair import extract_json_object

logger = logging.getLogger(__name__)


class HttpReasoner(Reasoner):
    """
    Reasoner backed by a remote HTTP service.

    Transport failures, timeouts and non-2xx responses are retried and
    finally surfaced as ``ReasonerError``.
    """

    def __init__(
        self,
        endpoint: str | None = None,
        timeout: int | None = None,
        max_retries: int | None = None,
        max_concurrency: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the HTTP reasoner.

        Args:
            endpoint: Service base URL (uses config if not provided).
            timeout: Request timeout in seconds (uses config if not provided).
            max_retries: Retries after the first attempt.
            max_concurrency: Concurrent calls allowed by ``reason_batch``.
            transport: Optional httpx transport, used by tests.
        """
        settings = get_settings()
        self._endpoint = endpoint or settings.reasoner_endpoint
        self._timeout = timeout or settings.reasoner_timeout
        self._max_retries = settings.llm_max_retries if max_retries is None else max_retries
        self.max_concurrency = max_concurrency or settings.max_concurrent_calls
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._endpoint,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        client = await self._get_client()
        last_error: Exception | None = None

        for attempt in range(1, self._max_retries + 2):
            try:
                response = await client.post("/reason", json=payload)
                response.raise_for_status()
                body = response.json()
                if not isinstance(body, dict):
                    raise ReasonerError(f"Unexpected response body type: {type(body).__name__}")
                return body
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(f"Reasoner request failed (attempt {attempt}): {e}")
                last_error = e

        raise ReasonerError(f"Reasoner service failed after {self._max_retries + 1} attempt(s)", cause=last_error)

    async def reason(self, prompt: str, mode: ReasonMode = ReasonMode.PLAIN) -> ReasonOutput:
        """
        Send one prompt to the service.

        Raises:
            ReasonerError: On exhausted retries or an unusable structured reply.
        """
        body = await self._post({"prompt": prompt, "mode": mode.value})
        text = str(body.get("text") or "")

        if mode != ReasonMode.STRUCTURED:
            return text

        data = body.get("data")
        if not isinstance(data, dict):
            data = extract_json_object(text)
        if not data:
            raise ReasonerError("Structured call returned no parseable JSON")
        return StructuredResult(data=data, raw=text)
