import json
import logging
from collections.abc import Mapping
from typing import Any, Dict

from errors import ArgumentParseError, HandlerExecutionError, ToolError
from metrics import TOOL_CALLS
from models import ToolResult
from tools.registry import ToolRegistry
from utils import maybe_await


class ToolDispatcher:
    """Runs tool calls requested by an assistant run.

    Never raises: every failure becomes a failure ToolResult so the run can be
    resumed with something it understands.
    """

    def __init__(self, registry: ToolRegistry, session_arg_key: str = "sessionId"):
        self.registry = registry
        self.session_arg_key = session_arg_key
        self.logger = logging.getLogger("app")

    async def dispatch(self, session_id: str, tool_call: Any) -> ToolResult:
        name = tool_call.function.name
        try:
            args = self._parse_arguments(tool_call.function.arguments)
            args[self.session_arg_key] = session_id
            handler = self.registry.resolve(name)
            self.logger.info(f"Function: {name} Args: {args}",
                             extra={"extra_data": {"session_id": session_id, "tool_call_id": tool_call.id}})
            output = await self._invoke(name, handler, args)
            encoded = self._encode(output)
        except ToolError as e:
            self.logger.warning(f"Tool call {tool_call.id} ({name}) failed: {e}",
                                extra={"extra_data": {"session_id": session_id, "tool_call_id": tool_call.id}})
            # unresolved names come from the model; keep them out of the label set
            label = name if name in self.registry else "unknown"
            TOOL_CALLS.labels(tool=label, status="failure").inc()
            return ToolResult.failure(tool_call.id, str(e))
        TOOL_CALLS.labels(tool=name, status="success").inc()
        return ToolResult.success(tool_call.id, output, encoded)

    @staticmethod
    def _parse_arguments(raw: str) -> Dict[str, Any]:
        try:
            args = json.loads(raw)
        except (TypeError, ValueError):
            raise ArgumentParseError("Invalid function arguments") from None
        if not isinstance(args, dict):
            raise ArgumentParseError("Invalid function arguments")
        return args

    @staticmethod
    async def _invoke(name: str, handler, args: Dict[str, Any]) -> Any:
        try:
            result = await maybe_await(handler(args))
        except Exception as e:
            raise HandlerExecutionError(str(e) or type(e).__name__) from e
        if not isinstance(result, Mapping) or "data" not in result:
            raise HandlerExecutionError("Function returned no data.")
        return result["data"]

    @staticmethod
    def _encode(output: Any) -> str:
        try:
            return json.dumps(output)
        except (TypeError, ValueError) as e:
            raise HandlerExecutionError(f"Function returned data that is not JSON serializable: {e}") from e
