from abc import ABC, abstractmethod
from typing import (
    Any,
    AsyncIterator,
    Dict,
    List
)

from models import RunInfo


class AssistantBackend(ABC):
    """Control API of the remote assistant service."""

    @abstractmethod
    async def create_thread(self) -> str:
        """Create a conversation thread and return its id"""

    @abstractmethod
    async def list_runs(self, thread_id: str) -> List[RunInfo]:
        """List runs on a thread"""

    @abstractmethod
    async def append_message(self, thread_id: str, content: str) -> None:
        """Append a user message; rejects while a run is active"""

    @abstractmethod
    async def create_run(self, thread_id: str) -> AsyncIterator[Any]:
        """Start a streamed run"""

    @abstractmethod
    async def submit_tool_outputs(self, thread_id: str, run_id: str,
                                  tool_outputs: List[Dict[str, str]]) -> AsyncIterator[Any]:
        """Submit tool outputs and return the continuation stream"""

    @abstractmethod
    async def cancel_run(self, thread_id: str, run_id: str) -> None:
        """Cancel a run"""
