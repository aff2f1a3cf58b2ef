"""工具调用 trace 记录器。"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Sequence, Union

from .definitions import ToolCallRequest, ToolCallResult


MAX_ARG_CHARS = 200
MAX_PREVIEW_CHARS = 400


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class CallTraceRecorder:
    """把每一轮 invoke_all 的调用明细写入 JSON 文件，便于审计。

    每个批次一个文件：``<directory>/<batch_id>.json``。
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory).expanduser()
        self.directory.mkdir(parents=True, exist_ok=True)

    def record_batch(
        self,
        batch_id: str,
        requests: Sequence[ToolCallRequest],
        results: Sequence[ToolCallResult],
        started_at: str,
    ) -> Path:
        calls: List[Dict[str, Any]] = []
        for request, result in zip(requests, results):
            calls.append(
                {
                    "call_id": request.call_id,
                    "tool_name": request.tool_name,
                    "args": _trim_args(request.raw_arguments),
                    "is_error": result.is_error,
                    "elapsed_ms": result.elapsed_ms,
                    "result_preview": result.content[:MAX_PREVIEW_CHARS],
                }
            )
        data = {
            "batch_id": batch_id,
            "started_at": started_at,
            "finished_at": _utcnow(),
            "error_count": sum(1 for r in results if r.is_error),
            "calls": calls,
        }
        path = self.directory / f"{batch_id}.json"
        path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        return path


def _trim_args(raw_arguments: str) -> Any:
    try:
        args = json.loads(raw_arguments) if raw_arguments and raw_arguments.strip() else {}
    except json.JSONDecodeError:
        return _trim_value(raw_arguments)
    if not isinstance(args, dict):
        return _trim_value(args)
    return {key: _trim_value(value) for key, value in args.items()}


def _trim_value(value: Any) -> Any:
    if isinstance(value, str) and len(value) > MAX_ARG_CHARS:
        return value[:MAX_ARG_CHARS] + "..."
    return value
