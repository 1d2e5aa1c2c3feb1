import json
from datetime import datetime

import pytest
from prometheus_client import REGISTRY

from llm.local_backend import function_call
from models import ToolResult
from tools import build_registry
from tools.dispatcher import ToolDispatcher
from tools.registry import DirectoryToolSource, ToolRegistry


def _write_tool(directory, name, body):
    directory.mkdir(parents=True, exist_ok=True)
    (directory / f"{name}.py").write_text(body, encoding="utf-8")


@pytest.mark.asyncio
async def test_success_output_echoes_data(dispatcher):
    call = function_call("call_1", "get_answer", {"question": "life"})

    result = await dispatcher.dispatch("caller-7", call)

    assert result == ToolResult(tool_call_id="call_1",
                                output={"status": "success", "value": 42, "caller": "caller-7"})
    assert result.to_submission() == {
        "tool_call_id": "call_1",
        "output": json.dumps({"status": "success", "value": 42, "caller": "caller-7"}),
    }


@pytest.mark.asyncio
async def test_invalid_json_never_reaches_a_handler():
    calls = []
    tools = ToolRegistry()
    tools.register("record", lambda args: calls.append(args) or {"data": None})
    dispatcher = ToolDispatcher(tools)

    result = await dispatcher.dispatch("s1", function_call("call_1", "record", "{not json"))

    assert result.output == {"status": "failure", "message": "Invalid function arguments"}
    assert result.failed
    assert calls == []


@pytest.mark.asyncio
async def test_non_object_arguments_are_rejected(dispatcher):
    result = await dispatcher.dispatch("s1", function_call("call_1", "get_answer", "[1, 2]"))

    assert result.output == {"status": "failure", "message": "Invalid function arguments"}


@pytest.mark.asyncio
async def test_unknown_function(dispatcher):
    result = await dispatcher.dispatch("s1", function_call("call_9", "nope", {}))

    assert result.tool_call_id == "call_9"
    assert result.output == {"status": "failure", "message": "Function not found."}


@pytest.mark.asyncio
async def test_handler_exception_becomes_failure():
    tools = ToolRegistry()

    async def explode(args):
        raise RuntimeError("AMI unreachable")

    tools.register("explode", explode)
    result = await ToolDispatcher(tools).dispatch("s1", function_call("call_1", "explode", {}))

    assert result.output == {"status": "failure", "message": "AMI unreachable"}


@pytest.mark.asyncio
async def test_handler_without_data_is_a_failure():
    tools = ToolRegistry()
    tools.register("silent", lambda args: None)

    result = await ToolDispatcher(tools).dispatch("s1", function_call("call_1", "silent", {}))

    assert result.output == {"status": "failure", "message": "Function returned no data."}


@pytest.mark.asyncio
async def test_session_id_injected_under_configured_key():
    seen = {}
    tools = ToolRegistry()

    def capture(args):
        seen.update(args)
        return {"data": "ok"}

    tools.register("capture", capture)
    dispatcher = ToolDispatcher(tools, session_arg_key="uuid")

    await dispatcher.dispatch("call-42", function_call("call_1", "capture", {"x": 1}))

    assert seen == {"x": 1, "uuid": "call-42"}


@pytest.mark.asyncio
async def test_first_matching_source_wins(tmp_path):
    _write_tool(tmp_path / "internal", "lookup",
                "def handler(args):\n    return {'data': 'internal'}\n")
    _write_tool(tmp_path / "external", "lookup",
                "def handler(args):\n    return {'data': 'external'}\n")
    _write_tool(tmp_path / "external", "extra",
                "async def handler(args):\n    return {'data': args['sessionId']}\n")
    tools = ToolRegistry.from_sources([
        DirectoryToolSource(str(tmp_path / "internal"), name="internal"),
        DirectoryToolSource(str(tmp_path / "external"), name="external"),
    ])
    dispatcher = ToolDispatcher(tools)

    lookup = await dispatcher.dispatch("s1", function_call("c1", "lookup", {}))
    extra = await dispatcher.dispatch("s1", function_call("c2", "extra", {}))

    assert lookup.output == "internal"
    assert tools.origin("lookup") == "internal"
    assert extra.output == "s1"


def test_broken_tool_module_is_skipped(tmp_path):
    _write_tool(tmp_path, "broken", "raise ImportError('missing dependency')\n")
    _write_tool(tmp_path, "no_handler", "VALUE = 1\n")
    _write_tool(tmp_path, "fine", "def handler(args):\n    return {'data': 1}\n")

    tools = ToolRegistry.from_sources([DirectoryToolSource(str(tmp_path))])

    assert "fine" in tools
    assert "broken" not in tools
    assert "no_handler" not in tools


def test_builtin_tools_precede_functions_dir(tmp_path):
    _write_tool(tmp_path, "avr_hangup", "def handler(args):\n    return {'data': 'override'}\n")
    _write_tool(tmp_path, "lookup_order", "def handler(args):\n    return {'data': 'order'}\n")

    tools = build_registry(str(tmp_path))

    assert tools.origin("avr_hangup") == "avr_functions"
    assert tools.origin("avr_transfer") == "avr_functions"
    assert tools.origin("lookup_order") == "functions"


def test_missing_functions_dir_is_tolerated(tmp_path):
    tools = build_registry(str(tmp_path / "does-not-exist"))

    assert len(tools) == 2


@pytest.mark.asyncio
async def test_unencodable_data_becomes_failure():
    tools = ToolRegistry()
    tools.register("clock", lambda args: {"data": {"at": datetime(2024, 1, 1)}})

    result = await ToolDispatcher(tools).dispatch("s1", function_call("call_1", "clock", {}))

    assert result.failed
    assert result.output["message"].startswith("Function returned data that is not JSON serializable")
    assert json.loads(result.to_submission()["output"]) == result.output


@pytest.mark.asyncio
async def test_unresolved_names_share_one_metric_label(dispatcher):
    def failures(tool):
        return REGISTRY.get_sample_value("tool_calls_total", {"tool": tool, "status": "failure"}) or 0

    before = failures("unknown")

    await dispatcher.dispatch("s1", function_call("call_1", "made_up_tool_1", {}))
    await dispatcher.dispatch("s1", function_call("call_2", "made_up_tool_2", {}))

    assert failures("unknown") == before + 2
    assert failures("made_up_tool_1") == 0
