import asyncio
import logging
from typing import Optional, Set

from base import AssistantBackend
from config.settings import Settings, settings as default_settings
from errors import AdmissionConflict
from sessions.admission import AdmissionCoordinator
from sessions.registry import SessionRegistry
from streaming.framer import FrameChannel
from streaming.processor import StreamProcessor
from tools.dispatcher import ToolDispatcher
from tools.registry import ToolRegistry


class AssistantAgent:
    """Runs one client turn against the assistant service."""

    name = "AssistantAgent"

    def __init__(
        self,
        backend: AssistantBackend,
        tools: ToolRegistry,
        settings: Optional[Settings] = None,
        registry: Optional[SessionRegistry] = None,
    ):
        self.settings = settings or default_settings
        self.backend = backend
        self.registry = registry or SessionRegistry(backend)
        self.admission = AdmissionCoordinator(backend, self.registry)
        self.dispatcher = ToolDispatcher(tools, session_arg_key=self.settings.tools.session_arg_key)
        self._tasks: Set[asyncio.Task] = set()
        self.logger = logging.getLogger("app")

    def log(self, request_id: str, session_id: str, msg: str, level: str = "info"):
        extra = {'extra_data': {"request_id": request_id, "session_id": session_id, "agent": self.name}}
        getattr(self.logger, level)(msg, extra=extra)

    async def start_turn(self, request_id: str, session_id: str, message: str) -> FrameChannel:
        """Admit the turn and start streaming it.

        Raises AdmissionConflict when the session is busy and RemoteServiceError
        when the assistant service fails before any output exists. The returned
        channel is fed by a background task that outlives this call.
        """
        ttl = self.settings.sessions.idle_ttl_seconds
        if ttl:
            self.registry.evict_idle(ttl)
        session = await self.registry.get_or_create(session_id)
        thread_id = session.thread_id

        cfg = self.settings.admission
        admission = await self.admission.acquire(thread_id, cfg.max_retries, cfg.retry_delay_seconds)
        if not admission.ok:
            self.log(request_id, session_id, "Run did not complete within the allowed time.", "warning")
            raise AdmissionConflict(admission.detail)

        lease = admission.lease
        try:
            await self.backend.append_message(thread_id, message)
            stream = await self.backend.create_run(thread_id)
        except BaseException:
            lease.release()
            raise

        channel = FrameChannel()
        processor = StreamProcessor(
            backend=self.backend,
            dispatcher=self.dispatcher,
            channel=channel,
            session_id=session_id,
            thread_id=thread_id,
            lease=lease,
            waiting_message=self.settings.waiting.message,
            waiting_delay=self.settings.waiting.timeout_seconds,
            cancel_on_disconnect=self.settings.streaming.cancel_on_disconnect,
            request_id=request_id,
        )
        task = asyncio.create_task(processor.run(stream))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self.log(request_id, session_id, f"Streaming run on {thread_id}")
        return channel

    async def drain(self) -> None:
        """Wait for in-flight turns to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
