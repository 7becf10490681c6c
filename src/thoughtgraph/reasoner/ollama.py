"""
Ollama-backed reasoner.

Runs prompts through the local ``ollama run`` CLI. The blocking subprocess
call is pushed onto the default executor so stages can fan out.
"""

import asyncio
import logging
import subprocess

from thoughtgraph.config import get_settings
from thoughtgraph.errors import ReasonerError
from thoughtgraph.reasoner.base import Reasoner, ReasonMode, ReasonOutput, StructuredResult
from thoughtgraph.reasoner.json_repair import extract_json_object

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_MODEL = "gpt-oss:20b"

_MODE_PREAMBLE = {
    ReasonMode.PLAIN: "",
    ReasonMode.STRUCTURED: (
        "[SYSTEM]\nYou must respond with valid JSON only. No additional text or explanation.\n"
    ),
    ReasonMode.SEARCH: (
        "[SYSTEM]\nAct as a literature search assistant. List the most relevant published "
        "findings you know of, with authors, year and venue where possible.\n"
    ),
    ReasonMode.CODE: (
        "[SYSTEM]\nRespond with a short, self-contained Python snippet and its printed result.\n"
    ),
}


class OllamaError(ReasonerError):
    """Exception raised when the Ollama CLI fails."""

    def __init__(self, message: str, return_code: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.return_code = return_code
        self.stderr = stderr


class OllamaReasoner(Reasoner):
    """
    Reasoner that shells out to ``ollama run <model>``.

    Structured calls ask for JSON and repair whatever comes back.
    """

    def __init__(
        self,
        model: str | None = None,
        max_retries: int | None = None,
        timeout: int | None = None,
        max_concurrency: int | None = None,
    ) -> None:
        """
        Initialize the Ollama reasoner.

        Args:
            model: Model name (defaults to the configured model).
            max_retries: Number of retries on failure.
            timeout: Timeout in seconds for each CLI call.
            max_concurrency: Concurrent calls allowed by ``reason_batch``.
        """
        settings = get_settings()
        self._model = model or settings.llm_model_name or DEFAULT_OLLAMA_MODEL
        self._max_retries = settings.llm_max_retries if max_retries is None else max_retries
        self._timeout = timeout or settings.llm_timeout
        self.max_concurrency = max_concurrency or settings.max_concurrent_calls

        logger.info(f"Initialized Ollama reasoner with model: {self._model}")

    @property
    def model(self) -> str:
        """Get the model name."""
        return self._model

    def _run_ollama_sync(self, prompt: str) -> str:
        """
        Run Ollama CLI synchronously with retry logic.

        Raises:
            OllamaError: If Ollama fails after all retries.
        """
        cmd = ["ollama", "run", self._model]
        last_error: OllamaError | None = None
        attempts = 0

        while attempts <= self._max_retries:
            attempts += 1
            try:
                logger.debug(f"Running Ollama (attempt {attempts}): {' '.join(cmd)}")
                process = subprocess.run(
                    cmd,
                    input=prompt,
                    capture_output=True,
                    text=True,
                    timeout=self._timeout,
                )

                if process.returncode != 0:
                    error_msg = process.stderr.strip() or f"Exit code: {process.returncode}"
                    logger.warning(f"Ollama failed (attempt {attempts}): {error_msg}")
                    last_error = OllamaError(
                        f"Ollama exited with code {process.returncode}",
                        return_code=process.returncode,
                        stderr=process.stderr,
                    )
                    continue

                response = process.stdout.strip()
                logger.debug(f"Ollama response length: {len(response)} chars")
                return response

            except subprocess.TimeoutExpired:
                logger.warning(f"Ollama timed out after {self._timeout}s (attempt {attempts})")
                last_error = OllamaError(f"Ollama timed out after {self._timeout} seconds")

            except FileNotFoundError as e:
                error_msg = "Ollama CLI not found. Please install Ollama: https://ollama.ai"
                logger.error(error_msg)
                raise OllamaError(error_msg) from e

            except OSError as e:
                logger.warning(f"Ollama error (attempt {attempts}): {e}")
                last_error = OllamaError(str(e))

        raise last_error or OllamaError("Ollama failed after all retries")

    async def reason(self, prompt: str, mode: ReasonMode = ReasonMode.PLAIN) -> ReasonOutput:
        """
        Run one prompt through Ollama.

        Raises:
            OllamaError: If the CLI fails after all retries, or a structured
                call yields no parseable JSON.
        """
        full_prompt = f"{_MODE_PREAMBLE[mode]}[USER]\n{prompt.strip()}\n\n[ASSISTANT]\n"
        loop = asyncio.get_running_loop()
        text = await loop.run_in_executor(None, self._run_ollama_sync, full_prompt)

        if mode != ReasonMode.STRUCTURED:
            return text

        data = extract_json_object(text)
        if not data:
            raise OllamaError("Structured call returned no parseable JSON")
        return StructuredResult(data=data, raw=text)
