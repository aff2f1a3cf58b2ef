import asyncio
import json
import time

from toolcall_core.tools.definitions import ToolCallRequest
from toolcall_core.tools.executor import ToolInvoker
from toolcall_core.tools.registry import ToolRegistry


DELAY_SCHEMA = {"type": "object", "properties": {"delay": {"type": "number"}}, "required": ["delay"]}


def _request(call_id, tool_name, arguments):
    return ToolCallRequest(call_id=call_id, tool_name=tool_name, raw_arguments=json.dumps(arguments))


def _registry():
    registry = ToolRegistry()

    async def async_sleep(args):
        await asyncio.sleep(args["delay"])
        return args["delay"]

    async def session_id(args, context):
        return context["sessionId"]

    registry.add("async_sleep", "", DELAY_SCHEMA, async_sleep)
    registry.add("sync_sleep", "", DELAY_SCHEMA, lambda args: time.sleep(args["delay"]) or args["delay"])
    registry.add("session_id", "", {"type": "object"}, session_id, accepts_context=True)
    return registry


def test_ainvoke_all_preserves_order():
    invoker = ToolInvoker(_registry(), timeout=5, trace=None)
    requests = [
        _request("a", "async_sleep", {"delay": 0.2}),
        _request("b", "sync_sleep", {"delay": 0.1}),
        _request("c", "async_sleep", {"delay": 0.0}),
    ]
    results = asyncio.run(invoker.ainvoke_all(requests))
    assert [r.call_id for r in results] == ["a", "b", "c"]
    assert [r.output for r in results] == [0.2, 0.1, 0.0]


def test_ainvoke_all_isolates_failures():
    invoker = ToolInvoker(_registry(), timeout=5, trace=None)
    requests = [
        _request("a", "missing", {}),
        _request("b", "async_sleep", {}),
        _request("c", "async_sleep", {"delay": 0}),
    ]
    results = asyncio.run(invoker.ainvoke_all(requests))
    assert [r.is_error for r in results] == [True, True, False]
    assert results[0].output["code"] == "UNKNOWN_TOOL"
    assert results[1].output["code"] == "ARGUMENT_DECODE_ERROR"


def test_ainvoke_timeout_cancels_coroutine():
    invoker = ToolInvoker(_registry(), timeout=0.1, trace=None)
    start = time.perf_counter()
    results = asyncio.run(
        invoker.ainvoke_all(
            [_request("slow", "async_sleep", {"delay": 2}), _request("fast", "async_sleep", {"delay": 0})]
        )
    )
    assert time.perf_counter() - start < 1.0
    assert results[0].output["code"] == "TOOL_TIMEOUT"
    assert results[1].output == 0


def test_ainvoke_passes_context():
    invoker = ToolInvoker(_registry(), timeout=None, trace=None)
    result = asyncio.run(invoker.ainvoke(_request("s", "session_id", {}), {"sessionId": "123"}))
    assert not result.is_error
    assert result.output == "123"


def test_ainvoke_callable_exception():
    async def boom(args):
        raise RuntimeError("upstream 503")

    registry = ToolRegistry()
    registry.add("boom", "", {"type": "object"}, boom)
    result = asyncio.run(ToolInvoker(registry, trace=None).ainvoke(_request("b", "boom", {})))
    assert result.is_error
    assert result.output["code"] == "CALLABLE_EXECUTION_ERROR"
    assert "upstream 503" in result.output["error"]


def test_ainvoke_all_sequential_mode():
    invoker = ToolInvoker(_registry(), parallel=False, trace=None)
    requests = [_request(str(i), "async_sleep", {"delay": 0}) for i in range(3)]
    results = asyncio.run(invoker.ainvoke_all(requests))
    assert [r.call_id for r in results] == ["0", "1", "2"]
