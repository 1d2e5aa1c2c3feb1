import asyncio
import itertools
import json
from collections import defaultdict, deque
from types import SimpleNamespace
from typing import Any, AsyncIterator, Deque, Dict, List, Sequence

from base import AssistantBackend
from errors import RemoteServiceError, RunInProgressError
from models import EventKind, RunInfo


# Event builders shaped like the OpenAI assistant stream events.

def run_created(run_id: str, thread_id: str = "") -> SimpleNamespace:
    return SimpleNamespace(event=EventKind.RUN_CREATED.value,
                           data=SimpleNamespace(id=run_id, thread_id=thread_id, status="queued"))


def text_delta(value: str) -> SimpleNamespace:
    fragment = SimpleNamespace(index=0, type="text", text=SimpleNamespace(value=value))
    return SimpleNamespace(event=EventKind.MESSAGE_DELTA.value,
                           data=SimpleNamespace(delta=SimpleNamespace(content=[fragment])))


def function_call(call_id: str, name: str, arguments: Any) -> SimpleNamespace:
    if not isinstance(arguments, str):
        arguments = json.dumps(arguments)
    return SimpleNamespace(id=call_id, type="function",
                           function=SimpleNamespace(name=name, arguments=arguments))


def requires_action(run_id: str, tool_calls: Sequence[Any], thread_id: str = "",
                    action_type: str = "submit_tool_outputs") -> SimpleNamespace:
    action = SimpleNamespace(type=action_type,
                             submit_tool_outputs=SimpleNamespace(tool_calls=list(tool_calls)))
    return SimpleNamespace(event=EventKind.REQUIRES_ACTION.value,
                           data=SimpleNamespace(id=run_id, thread_id=thread_id, status="requires_action",
                                                required_action=action))


def run_completed(run_id: str, thread_id: str = "") -> SimpleNamespace:
    return SimpleNamespace(event=EventKind.RUN_COMPLETED.value,
                           data=SimpleNamespace(id=run_id, thread_id=thread_id, status="completed"))


def run_failed(run_id: str, message: str = "server_error", thread_id: str = "") -> SimpleNamespace:
    return SimpleNamespace(event=EventKind.RUN_FAILED.value,
                           data=SimpleNamespace(id=run_id, thread_id=thread_id, status="failed",
                                                last_error=SimpleNamespace(code="server_error", message=message)))


_STATUS_AFTER = {
    EventKind.RUN_CREATED.value: "in_progress",
    EventKind.REQUIRES_ACTION.value: "requires_action",
    EventKind.RUN_COMPLETED.value: "completed",
    EventKind.RUN_FAILED.value: "failed",
}


class LocalAssistantBackend(AssistantBackend):
    """A local mock. Echoes the last user message unless runs are scripted."""

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self._ids = itertools.count(1)
        self.threads: Dict[str, List[str]] = {}
        self.runs: Dict[str, List[RunInfo]] = defaultdict(list)
        self.run_scripts: Deque[List[Any]] = deque()
        self.continuations: Deque[List[Any]] = deque()
        self.submitted: List[Dict[str, Any]] = []
        self.cancelled: List[str] = []

    def script_run(self, *events: Any) -> None:
        self.run_scripts.append(list(events))

    def script_continuation(self, *events: Any) -> None:
        self.continuations.append(list(events))

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}_local_{next(self._ids)}"

    def _thread(self, thread_id: str) -> List[str]:
        if thread_id not in self.threads:
            raise RemoteServiceError(f"No thread found with id '{thread_id}'.")
        return self.threads[thread_id]

    def _set_status(self, thread_id: str, run_id: str, status: str) -> None:
        runs = self.runs[thread_id]
        for i, run in enumerate(runs):
            if run.id == run_id:
                runs[i] = RunInfo(id=run_id, status=status)
                return
        runs.append(RunInfo(id=run_id, status=status))

    async def create_thread(self) -> str:
        if self.latency:
            await asyncio.sleep(self.latency)
        thread_id = self._next_id("thread")
        self.threads[thread_id] = []
        return thread_id

    async def list_runs(self, thread_id: str) -> List[RunInfo]:
        self._thread(thread_id)
        return list(self.runs[thread_id])

    async def append_message(self, thread_id: str, content: str) -> None:
        messages = self._thread(thread_id)
        active = [run for run in self.runs[thread_id] if run.active]
        if active:
            raise RunInProgressError(
                f"Can't add messages to {thread_id} while a run {active[0].id} is active.")
        messages.append(content)

    async def create_run(self, thread_id: str) -> AsyncIterator[Any]:
        messages = self._thread(thread_id)
        if self.run_scripts:
            events = self.run_scripts.popleft()
            run_id = next((e.data.id for e in events
                           if getattr(e, "event", None) == EventKind.RUN_CREATED.value), None)
            run_id = run_id or self._next_id("run")
        else:
            run_id = self._next_id("run")
            reply = messages[-1] if messages else ""
            events = [run_created(run_id, thread_id), text_delta(reply), run_completed(run_id, thread_id)]
        self._set_status(thread_id, run_id, "queued")
        return self._stream(thread_id, run_id, events)

    async def submit_tool_outputs(self, thread_id: str, run_id: str,
                                  tool_outputs: List[Dict[str, str]]) -> AsyncIterator[Any]:
        self._thread(thread_id)
        self.submitted.append({"thread_id": thread_id, "run_id": run_id, "tool_outputs": list(tool_outputs)})
        self._set_status(thread_id, run_id, "in_progress")
        events = self.continuations.popleft() if self.continuations else [run_completed(run_id, thread_id)]
        return self._stream(thread_id, run_id, events)

    async def cancel_run(self, thread_id: str, run_id: str) -> None:
        self._thread(thread_id)
        self.cancelled.append(run_id)
        self._set_status(thread_id, run_id, "cancelled")

    async def _stream(self, thread_id: str, run_id: str, events: List[Any]) -> AsyncIterator[Any]:
        for event in events:
            if isinstance(event, BaseException):
                raise event
            if self.latency:
                await asyncio.sleep(self.latency)
            status = _STATUS_AFTER.get(getattr(event, "event", None))
            if status:
                self._set_status(thread_id, run_id, status)
            yield event
