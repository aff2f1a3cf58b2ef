import asyncio
import json
import time
from dataclasses import dataclass
from datetime import date, datetime

from pydantic import BaseModel

from toolcall_core.domain.exceptions import ToolError
from toolcall_core.tools.definitions import ToolCallRequest, ToolContext
from toolcall_core.tools.executor import ToolInvoker
from toolcall_core.tools.registry import ToolRegistry
from toolcall_core.tools.trace import CallTraceRecorder


TEMPERATURES = {"San Francisco": 15.5, "Tokyo": 22.0, "Paris": 18.3}


class WeatherRequest(BaseModel):
    location: str


@dataclass
class Forecast:
    location: str
    day: date
    high: float


def _request(call_id, tool_name, arguments):
    return ToolCallRequest(call_id=call_id, tool_name=tool_name, raw_arguments=json.dumps(arguments))


def _weather_registry():
    registry = ToolRegistry()

    @registry.tool(name="CurrentWeather", description="Get the current weather in a given location")
    def current_weather(request: WeatherRequest):
        return {"location": request.location, "temperature": TEMPERATURES[request.location], "unit": "C"}

    return registry


def _invoker(registry, **kwargs):
    kwargs.setdefault("timeout", 5)
    kwargs.setdefault("trace", None)
    return ToolInvoker(registry, **kwargs)


def test_weather_in_three_cities():
    invoker = _invoker(_weather_registry(), max_workers=3)
    requests = [
        _request(f"call_{i}", "CurrentWeather", {"location": city})
        for i, city in enumerate(["San Francisco", "Tokyo", "Paris"])
    ]
    results = invoker.invoke_all(requests)
    assert [r.call_id for r in results] == ["call_0", "call_1", "call_2"]
    assert not any(r.is_error for r in results)
    assert [json.loads(r.content)["temperature"] for r in results] == [15.5, 22.0, 18.3]
    assert [r.output["location"] for r in results] == ["San Francisco", "Tokyo", "Paris"]


def test_results_follow_request_order_not_completion_order():
    registry = ToolRegistry()
    registry.add(
        "sleepy",
        "sleep then echo",
        {"type": "object", "properties": {"delay": {"type": "number"}}, "required": ["delay"]},
        lambda args: time.sleep(args["delay"]) or args["delay"],
    )
    invoker = _invoker(registry, max_workers=4)
    delays = [0.3, 0.2, 0.1, 0.0]
    results = invoker.invoke_all([_request(f"c{i}", "sleepy", {"delay": d}) for i, d in enumerate(delays)])
    assert [r.call_id for r in results] == ["c0", "c1", "c2", "c3"]
    assert [r.output for r in results] == delays


def test_unknown_tool_does_not_affect_siblings():
    invoker = _invoker(_weather_registry())
    results = invoker.invoke_all(
        [
            _request("a", "CurrentWeather", {"location": "Tokyo"}),
            _request("b", "Horoscope", {"sign": "leo"}),
            _request("c", "CurrentWeather", {"location": "Paris"}),
        ]
    )
    assert len(results) == 3
    assert results[1].is_error
    assert results[1].call_id == "b"
    assert results[1].output["code"] == "UNKNOWN_TOOL"
    assert results[1].output["error_type"] == "UnknownToolError"
    assert not results[0].is_error and not results[2].is_error


def test_missing_required_field_is_an_error_result():
    invoker = _invoker(_weather_registry())
    results = invoker.invoke_all(
        [_request("a", "CurrentWeather", {}), _request("b", "CurrentWeather", {"location": "Tokyo"})]
    )
    assert results[0].is_error
    assert results[0].output["code"] == "ARGUMENT_DECODE_ERROR"
    assert results[0].output["details"]["errors"][0]["loc"] == "location"
    assert not results[1].is_error


def test_success_output_round_trips_through_json():
    payload = {"items": [1, 2.5, "three", None, True], "nested": {"ok": False}, "text": "晴天"}
    registry = ToolRegistry()
    registry.add("payload", "", {"type": "object"}, lambda args: payload)
    result = _invoker(registry).invoke(_request("p", "payload", {}))
    assert not result.is_error
    assert json.loads(result.content) == payload
    assert "晴天" in result.content


def test_structured_return_values_are_encoded():
    registry = ToolRegistry()
    registry.add(
        "forecast",
        "",
        {"type": "object"},
        lambda args: [Forecast("Tokyo", date(2024, 5, 1), 24.0), WeatherRequest(location="Paris")],
    )
    result = _invoker(registry).invoke(_request("f", "forecast", {}))
    assert result.output == [
        {"location": "Tokyo", "day": "2024-05-01", "high": 24.0},
        {"location": "Paris"},
    ]


def test_unencodable_results_are_errors():
    registry = ToolRegistry()
    registry.add("obj", "", {"type": "object"}, lambda args: object())
    results = _invoker(registry).invoke_all([_request("1", "obj", {}), _request("2", "obj", {})])
    assert [r.output["code"] for r in results] == ["RESULT_ENCODE_ERROR", "RESULT_ENCODE_ERROR"]


def test_callable_exception_is_wrapped():
    def explode(args):
        raise ValueError("weather service unavailable")

    registry = _weather_registry()
    registry.add("explode", "", {"type": "object"}, explode)
    results = _invoker(registry).invoke_all(
        [_request("x", "explode", {}), _request("y", "CurrentWeather", {"location": "Tokyo"})]
    )
    assert results[0].is_error
    assert results[0].output["code"] == "CALLABLE_EXECUTION_ERROR"
    assert "weather service unavailable" in results[0].output["error"]
    assert results[0].output["details"]["exception_type"] == "ValueError"
    assert not results[1].is_error


def test_tool_error_raised_by_callable_keeps_its_code():
    def quota(args):
        raise ToolError("Daily quota exceeded", code="QUOTA_EXCEEDED", details={"limit": 100})

    registry = ToolRegistry()
    registry.add("quota", "", {"type": "object"}, quota)
    result = _invoker(registry).invoke(_request("q", "quota", {}))
    assert result.is_error
    assert result.output == {
        "error": "Daily quota exceeded",
        "code": "QUOTA_EXCEEDED",
        "error_type": "ToolError",
        "details": {"limit": 100},
    }


def test_timeout_yields_error_without_blocking_siblings():
    registry = _weather_registry()
    registry.add("slow", "", {"type": "object"}, lambda args: time.sleep(0.5) or "late")
    invoker = _invoker(registry, timeout=0.1)
    start = time.perf_counter()
    results = invoker.invoke_all(
        [_request("s", "slow", {}), _request("w", "CurrentWeather", {"location": "Paris"})]
    )
    assert time.perf_counter() - start < 0.45
    assert results[0].is_error
    assert results[0].output["code"] == "TOOL_TIMEOUT"
    assert results[0].output["details"] == {"timeout": 0.1}
    assert not results[1].is_error


def test_context_only_reaches_context_aware_tools():
    registry = ToolRegistry()
    empty = {"type": "object", "properties": {}}
    registry.add("with_context", "", empty, lambda args, context: context.get("sessionId"), accepts_context=True)
    registry.add("without_context", "", empty, lambda *args: len(args))
    results = _invoker(registry).invoke_all(
        [_request("1", "with_context", {}), _request("2", "without_context", {})],
        context={"sessionId": "123"},
    )
    assert results[0].output == "123"
    assert results[1].output == 1


def test_context_is_read_only():
    def mutate(args, context):
        context["sessionId"] = "hijacked"

    registry = ToolRegistry()
    registry.add("mutate", "", {"type": "object"}, mutate, accepts_context=True)
    context = ToolContext(sessionId="123")
    result = _invoker(registry).invoke(_request("m", "mutate", {}), context)
    assert result.is_error
    assert result.output["code"] == "CALLABLE_EXECUTION_ERROR"
    assert context["sessionId"] == "123"


def test_context_defaults_to_empty():
    registry = ToolRegistry()
    registry.add("ctx", "", {"type": "object"}, lambda args, context: dict(context), accepts_context=True)
    assert _invoker(registry).invoke(_request("c", "ctx", {})).output == {}


def test_sequential_mode_matches_parallel_mode():
    requests = [_request(str(i), "CurrentWeather", {"location": c}) for i, c in enumerate(TEMPERATURES)]
    parallel = _invoker(_weather_registry(), parallel=True).invoke_all(requests)
    sequential = _invoker(_weather_registry(), parallel=False, timeout=None).invoke_all(requests)
    assert [r.output for r in parallel] == [r.output for r in sequential]


def test_coroutine_tools_run_in_sync_batches():
    async def async_echo(args):
        return args["value"]

    registry = ToolRegistry()
    registry.add("async_echo", "", {"type": "object", "properties": {"value": {"type": "string"}}}, async_echo)
    results = _invoker(registry).invoke_all(
        [_request("1", "async_echo", {"value": "a"}), _request("2", "async_echo", {"value": "b"})]
    )
    assert [r.output for r in results] == ["a", "b"]


def test_empty_batch():
    assert _invoker(_weather_registry()).invoke_all([]) == []


def test_context_merged_returns_new_context():
    base = ToolContext({"sessionId": "123"})
    extended = base.merged(userId="u1")
    assert dict(extended) == {"sessionId": "123", "userId": "u1"}
    assert "userId" not in base
    assert len(base) == 1


def test_tool_error_details_are_json_safe(tmp_path):
    def rate_limited(args):
        details = {"retry_at": datetime(2024, 1, 1), "hint": object()}
        raise ToolError("Rate limited", code="RATE_LIMITED", details=details)

    registry = _weather_registry()
    registry.add("rate_limited", "", {"type": "object"}, rate_limited)
    invoker = _invoker(registry, trace=CallTraceRecorder(tmp_path))
    results = invoker.invoke_all(
        [_request("r", "rate_limited", {}), _request("w", "CurrentWeather", {"location": "Tokyo"})]
    )
    payload = json.loads(results[0].content)
    assert payload["code"] == "RATE_LIMITED"
    assert payload["details"]["retry_at"] == "2024-01-01T00:00:00"
    assert payload["details"]["hint"].startswith("<object object")
    assert not results[1].is_error
    assert len(list(tmp_path.glob("batch-*.json"))) == 1


def test_coroutine_tool_invoked_inside_running_loop():
    async def async_echo(args):
        await asyncio.sleep(0)
        return args["value"]

    registry = ToolRegistry()
    registry.add("async_echo", "", {"type": "object", "properties": {"value": {"type": "string"}}}, async_echo)
    invoker = _invoker(registry, timeout=None, parallel=False)

    async def main():
        single = invoker.invoke(_request("1", "async_echo", {"value": "a"}))
        batch = invoker.invoke_all([_request("2", "async_echo", {"value": "b"})])
        return single, batch

    single, batch = asyncio.run(main())
    assert not single.is_error
    assert single.output == "a"
    assert [r.output for r in batch] == ["b"]
