import asyncio
import logging
from enum import Enum
from typing import Any, AsyncIterator, List, Optional

from base import AssistantBackend
from errors import StreamTransportError
from models import EventKind, OutputFrame, ToolResult
from sessions.registry import Lease
from streaming.framer import FrameChannel
from tools.dispatcher import ToolDispatcher


class ProcessorState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    TERMINAL = "terminal"


class WaitingNotice:
    """One-shot status frame for when the first token is slow to arrive."""

    def __init__(self, channel: FrameChannel, message: Optional[str], delay: float):
        self.channel = channel
        self.message = message
        self.delay = delay
        self._task: Optional[asyncio.Task] = None
        self._done = False

    @property
    def armed(self) -> bool:
        return self._task is not None and not self._done

    def arm(self) -> None:
        if not self.message or self._done or self._task is not None:
            return
        self._task = asyncio.create_task(self._fire())

    async def _fire(self) -> None:
        await asyncio.sleep(self.delay)
        if not self._done:
            self._done = True
            self.channel.send(OutputFrame.status(self.message))

    def cancel(self) -> None:
        self._done = True
        if self._task is not None and not self._task.done():
            self._task.cancel()


class StreamProcessor:
    """Turns a run's event stream into output frames.

    Tool submissions return a continuation stream; continuations are pushed on a
    stack and drained before the stream that triggered them resumes, which
    keeps event order without recursing.
    """

    def __init__(
        self,
        backend: AssistantBackend,
        dispatcher: ToolDispatcher,
        channel: FrameChannel,
        session_id: str,
        thread_id: str,
        lease: Optional[Lease] = None,
        waiting_message: Optional[str] = None,
        waiting_delay: float = 2.0,
        cancel_on_disconnect: bool = False,
        request_id: str = "-",
    ):
        self.backend = backend
        self.dispatcher = dispatcher
        self.channel = channel
        self.session_id = session_id
        self.thread_id = thread_id
        self.lease = lease
        self.cancel_on_disconnect = cancel_on_disconnect
        self.request_id = request_id
        self.state = ProcessorState.IDLE
        self.run_id: Optional[str] = None
        self.waiting = WaitingNotice(channel, waiting_message, waiting_delay)
        self.logger = logging.getLogger("app")
        self._handlers = {
            EventKind.RUN_CREATED: self._on_run_created,
            EventKind.MESSAGE_DELTA: self._on_message_delta,
            EventKind.REQUIRES_ACTION: self._on_requires_action,
            EventKind.RUN_COMPLETED: self._on_run_completed,
            EventKind.RUN_FAILED: self._on_run_failed,
        }

    def log(self, msg: str, level: str = "info", **kwargs):
        extra = {'extra_data': {"request_id": self.request_id, "session_id": self.session_id,
                                "thread_id": self.thread_id, "run_id": self.run_id}}
        getattr(self.logger, level)(msg, extra=extra, **kwargs)

    async def run(self, stream: AsyncIterator[Any]) -> None:
        stack: List[AsyncIterator[Any]] = [stream.__aiter__()]
        try:
            while stack:
                try:
                    event = await stack[-1].__anext__()
                except StopAsyncIteration:
                    stack.pop()
                    continue
                except Exception as e:
                    raise StreamTransportError(str(e)) from e
                continuation = await self.process(event)
                if continuation is not None:
                    stack.append(continuation.__aiter__())
                if self.channel.abandoned and self.cancel_on_disconnect:
                    await self._abandon()
                    break
        except StreamTransportError as e:
            self.log(f"Assistant stream failed: {e}", "error", exc_info=True)
            self.channel.send(OutputFrame.error("Assistant stream failed"))
            self.state = ProcessorState.TERMINAL
        except Exception as e:
            self.log(f"Stream processing aborted: {e}", "error", exc_info=True)
            self.channel.send(OutputFrame.error("Assistant stream failed"))
            self.state = ProcessorState.TERMINAL
        finally:
            self.waiting.cancel()
            self.channel.close()
            if self.lease is not None:
                self.lease.release()

    async def process(self, event: Any) -> Optional[AsyncIterator[Any]]:
        """Handle one event; returns a continuation stream after a tool submission."""
        kind = EventKind.parse(getattr(event, "event", None))
        handler = self._handlers.get(kind)
        if handler is None:
            self.log(f"Ignoring event {getattr(event, 'event', None)}", "debug")
            if self.state is ProcessorState.IDLE:
                self.state = ProcessorState.STREAMING
            return None
        try:
            return await handler(event.data)
        except Exception as e:
            self.log(f"Error processing {kind.value}: {e}", "error", exc_info=True)
            self.channel.send(OutputFrame.error("Error processing assistant event"))
            return None

    async def _on_run_created(self, data: Any) -> None:
        self.run_id = data.id
        if self.lease is not None:
            self.lease.attach_run(data.id)
        self.state = ProcessorState.STREAMING
        self.waiting.arm()

    async def _on_message_delta(self, data: Any) -> None:
        self.waiting.cancel()
        self.state = ProcessorState.STREAMING
        content = data.delta.content
        if not content:
            return
        fragment = content[0]
        if fragment.type == "text":
            self.channel.send(OutputFrame.text(fragment.text.value))

    async def _on_requires_action(self, data: Any) -> Optional[AsyncIterator[Any]]:
        self.waiting.cancel()
        self.state = ProcessorState.STREAMING
        self.run_id = data.id
        action = data.required_action
        if action.type != "submit_tool_outputs":
            self.log(f"Unhandled requires_action type: {action.type}", "warning")
            self.channel.send(OutputFrame.error("Unsupported action type"))
            return None

        results = []
        for tool_call in action.submit_tool_outputs.tool_calls:
            if tool_call.type != "function":
                # every requested call needs an output or the submission is rejected
                self.log(f"Unsupported {tool_call.type} tool call {tool_call.id}", "warning")
                results.append(ToolResult.failure(tool_call.id, f"Unsupported tool call type: {tool_call.type}"))
                continue
            results.append(await self.dispatcher.dispatch(self.session_id, tool_call))
        self.log(f"Submitting {len(results)} tool outputs")
        return await self.backend.submit_tool_outputs(
            self.thread_id, data.id, [result.to_submission() for result in results]
        )

    async def _on_run_completed(self, data: Any) -> None:
        self.waiting.cancel()
        self.channel.send(OutputFrame.status("completed"))
        self.channel.close()
        self.state = ProcessorState.TERMINAL

    async def _on_run_failed(self, data: Any) -> None:
        self.waiting.cancel()
        error = getattr(data, "last_error", None)
        self.log(f"Run failed: {getattr(error, 'message', None)}", "warning")
        self.channel.send(OutputFrame.error("Assistant run failed"))
        self.channel.close()
        self.state = ProcessorState.TERMINAL

    async def _abandon(self) -> None:
        self.log("Client went away; cancelling run", "warning")
        if self.run_id is None:
            return
        try:
            await self.backend.cancel_run(self.thread_id, self.run_id)
        except Exception as e:
            self.log(f"Could not cancel run {self.run_id}: {e}", "warning")
