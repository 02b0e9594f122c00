from __future__ import annotations

import json
from typing import Any

from ...models.tool_spec import ToolCall


def parse_native_tool_calls(raw_calls: Any) -> list[ToolCall]:
    """
    Convert provider-native tool calls (`[{id?, function: {name, arguments}}]`) into ToolCalls.

    `arguments` may be a JSON string (OpenAI-compatible) or an object (Ollama).
    Entries that cannot be read are dropped.
    """

    if not isinstance(raw_calls, list):
        return []
    calls: list[ToolCall] = []
    for item in raw_calls:
        if not isinstance(item, dict):
            continue
        fn = item.get("function")
        if not isinstance(fn, dict) or not isinstance(fn.get("name"), str) or not fn["name"].strip():
            continue
        args = fn.get("arguments")
        if isinstance(args, str):
            try:
                args = json.loads(args) if args.strip() else {}
            except json.JSONDecodeError:
                continue
        if args is None:
            args = {}
        if not isinstance(args, dict):
            continue
        payload: dict[str, Any] = {"name": fn["name"], "arguments": args}
        if isinstance(item.get("id"), str) and item["id"].strip():
            payload["id"] = item["id"]
        calls.append(ToolCall.model_validate(payload))
    return calls
