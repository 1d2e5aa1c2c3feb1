import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from openai import APIConnectionError, APITimeoutError, AsyncOpenAI, BadRequestError, OpenAIError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential
)

from base import AssistantBackend
from config.settings import OpenAIConfig, settings
from errors import RemoteServiceError, RunInProgressError
from models import RunInfo

transient_retry = retry(
    retry=retry_if_exception_type((APIConnectionError, APITimeoutError)),
    wait=wait_random_exponential(min=1, max=5),
    stop=stop_after_attempt(3),
    reraise=True,
)


def is_run_in_progress(exc: Exception) -> bool:
    """True for the 400 the API returns when a thread still has an active run."""
    text = str(exc).lower()
    return isinstance(exc, BadRequestError) and "while a run" in text and "is active" in text


class OpenAIAssistantBackend(AssistantBackend):
    def __init__(self, cfg: Optional[OpenAIConfig] = None, client: Optional[AsyncOpenAI] = None):
        self.cfg = cfg or settings.openai
        self.client = client or AsyncOpenAI(
            api_key=self.cfg.api_key,
            timeout=self.cfg.request_timeout_seconds,
            max_retries=self.cfg.max_retries,
        )
        self.logger = logging.getLogger("app")

    async def create_thread(self) -> str:
        try:
            thread = await self.client.beta.threads.create()
        except OpenAIError as e:
            raise RemoteServiceError(f"thread creation failed: {e}") from e
        return thread.id

    async def list_runs(self, thread_id: str) -> List[RunInfo]:
        try:
            page = await self._list_runs(thread_id)
        except OpenAIError as e:
            raise RemoteServiceError(f"listing runs for {thread_id} failed: {e}") from e
        return [RunInfo(id=run.id, status=run.status) for run in page.data]

    @transient_retry
    async def _list_runs(self, thread_id: str):
        return await self.client.beta.threads.runs.list(thread_id, limit=20)

    async def append_message(self, thread_id: str, content: str) -> None:
        try:
            await self.client.beta.threads.messages.create(thread_id, role="user", content=content)
        except OpenAIError as e:
            if is_run_in_progress(e):
                raise RunInProgressError(str(e)) from e
            raise RemoteServiceError(f"appending message to {thread_id} failed: {e}") from e

    async def create_run(self, thread_id: str) -> AsyncIterator[Any]:
        if not self.cfg.assistant_id:
            raise RemoteServiceError("APP_OPENAI__ASSISTANT_ID is not configured")
        try:
            return await self.client.beta.threads.runs.create(
                thread_id,
                assistant_id=self.cfg.assistant_id,
                stream=True,
            )
        except OpenAIError as e:
            if is_run_in_progress(e):
                raise RunInProgressError(str(e)) from e
            raise RemoteServiceError(f"run creation on {thread_id} failed: {e}") from e

    async def submit_tool_outputs(self, thread_id: str, run_id: str,
                                  tool_outputs: List[Dict[str, str]]) -> AsyncIterator[Any]:
        try:
            return await self.client.beta.threads.runs.submit_tool_outputs(
                run_id,
                thread_id=thread_id,
                tool_outputs=tool_outputs,
                stream=True,
            )
        except OpenAIError as e:
            raise RemoteServiceError(f"submitting tool outputs for {run_id} failed: {e}") from e

    async def cancel_run(self, thread_id: str, run_id: str) -> None:
        try:
            await self._cancel_run(thread_id, run_id)
        except OpenAIError as e:
            raise RemoteServiceError(f"cancelling {run_id} failed: {e}") from e
        self.logger.info(f"Cancelled run {run_id} on {thread_id}")

    @transient_retry
    async def _cancel_run(self, thread_id: str, run_id: str) -> None:
        await self.client.beta.threads.runs.cancel(run_id, thread_id=thread_id)
