"""Minimal demonstration of one tool-calling round."""

import json

from pydantic import BaseModel, Field

from toolcall_core import ToolInvoker, ToolRegistry
from toolcall_core.providers import OpenAIToolCodec


registry = ToolRegistry()


class WeatherRequest(BaseModel):
    location: str = Field(description="City name, e.g. Tokyo")
    unit: str = "celsius"


@registry.tool(name="CurrentWeather", description="Get the current weather in a given location")
def current_weather(request: WeatherRequest, context):
    temperatures = {"San Francisco": 15.5, "Tokyo": 22.0, "Paris": 18.3}
    return {
        "location": request.location,
        "temperature": temperatures.get(request.location),
        "unit": request.unit,
        "session": context.get("sessionId"),
    }


if __name__ == "__main__":
    codec = OpenAIToolCodec()
    print("Tools:", json.dumps(codec.serialize_tools(registry.definitions()), ensure_ascii=False, indent=2))

    assistant_reply = {
        "role": "assistant",
        "content": None,
        "tool_calls": [
            {
                "id": f"call_{i}",
                "type": "function",
                "function": {"name": "CurrentWeather", "arguments": json.dumps({"location": city})},
            }
            for i, city in enumerate(["San Francisco", "Tokyo", "Paris"])
        ],
    }
    for message in codec.respond(ToolInvoker(registry), assistant_reply, {"sessionId": "123"}):
        print("Tool:", message["tool_call_id"], message["content"])
