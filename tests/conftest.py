import pytest

from llm.local_backend import LocalAssistantBackend
from sessions.registry import SessionRegistry
from tools.dispatcher import ToolDispatcher
from tools.registry import ToolRegistry


@pytest.fixture
def backend():
    return LocalAssistantBackend()


@pytest.fixture
def registry(backend):
    return SessionRegistry(backend)


@pytest.fixture
def tools():
    tools = ToolRegistry()

    def get_answer(args):
        return {"data": {"status": "success", "value": 42, "caller": args["sessionId"]}}

    tools.register("get_answer", get_answer, "test")
    return tools


@pytest.fixture
def dispatcher(tools):
    return ToolDispatcher(tools)
