import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Optional

from base import AssistantBackend


@dataclass
class Session:
    session_id: str
    thread_id: str
    active: bool = False
    run_id: Optional[str] = None
    # bumped on every activation and forced clear; stale leases compare against it
    generation: int = 0
    created_at: float = field(default_factory=time.monotonic)
    last_used_at: float = field(default_factory=time.monotonic)


class Lease:
    """Ownership of a session's active flag for one turn. Released at most once."""

    def __init__(self, session: Session, generation: int):
        self.session = session
        self.generation = generation
        self._released = False

    @property
    def thread_id(self) -> str:
        return self.session.thread_id

    @property
    def current(self) -> bool:
        return self.session.active and self.session.generation == self.generation

    def attach_run(self, run_id: str) -> None:
        if self.current:
            self.session.run_id = run_id

    def release(self) -> bool:
        if self._released:
            return False
        self._released = True
        if not self.current:
            return False
        self.session.active = False
        self.session.run_id = None
        self.session.last_used_at = time.monotonic()
        return True


class SessionRegistry:
    """Maps client session ids to remote threads and tracks the active run flag.

    All state changes happen without a suspension point in between, so they are
    atomic with respect to other tasks on the event loop.
    """

    def __init__(self, backend: AssistantBackend):
        self.backend = backend
        self._sessions: Dict[str, Session] = {}
        self._by_thread: Dict[str, Session] = {}
        self._creating: Dict[str, asyncio.Lock] = {}
        self.logger = logging.getLogger("app")

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def by_thread(self, thread_id: str) -> Session:
        return self._by_thread[thread_id]

    async def get_or_create(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            lock = self._creating.setdefault(session_id, asyncio.Lock())
            try:
                async with lock:
                    session = self._sessions.get(session_id)
                    if session is None:
                        # a failure here leaves nothing registered
                        thread_id = await self.backend.create_thread()
                        session = Session(session_id=session_id, thread_id=thread_id)
                        self._sessions[session_id] = session
                        self._by_thread[thread_id] = session
                        self.logger.info(
                            f"Created thread {thread_id} for session {session_id}",
                            extra={"extra_data": {"session_id": session_id, "thread_id": thread_id}},
                        )
            finally:
                self._creating.pop(session_id, None)
        session.last_used_at = time.monotonic()
        return session

    def is_active(self, thread_id: str) -> bool:
        session = self._by_thread.get(thread_id)
        return bool(session and session.active)

    def set_active(self, thread_id: str, active: bool) -> None:
        session = self.by_thread(thread_id)
        if active:
            session.generation += 1
            session.active = True
        else:
            self.force_clear(thread_id)

    def try_activate(self, thread_id: str) -> Optional[Lease]:
        session = self.by_thread(thread_id)
        if session.active:
            return None
        session.generation += 1
        session.active = True
        session.run_id = None
        return Lease(session, session.generation)

    def reconcile(self, thread_id: str, generation: int) -> bool:
        """Clear a flag the remote service says is stale, unless it was re-leased meanwhile."""
        session = self.by_thread(thread_id)
        if not session.active or session.generation != generation:
            return False
        session.active = False
        session.run_id = None
        return True

    def force_clear(self, thread_id: str) -> None:
        session = self.by_thread(thread_id)
        session.generation += 1
        session.active = False
        session.run_id = None

    def evict_idle(self, max_idle_seconds: float) -> int:
        cutoff = time.monotonic() - max_idle_seconds
        stale = [s for s in self._sessions.values() if not s.active and s.last_used_at < cutoff]
        for session in stale:
            del self._sessions[session.session_id]
            del self._by_thread[session.thread_id]
        if stale:
            self.logger.info(f"Evicted {len(stale)} idle sessions")
        return len(stale)
