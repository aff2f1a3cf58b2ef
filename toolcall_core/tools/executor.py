"""工具调用执行器。

ToolInvoker 负责模型一轮回复中的全部工具调用：

1. 按名称解析工具（未注册 -> UnknownToolError）。
2. 按工具声明的输入结构解码 arguments（不合法 -> ArgumentDecodeError）。
3. 调用工具函数，按需附带 ToolContext（抛异常 -> CallableExecutionError，
   超时 -> ToolTimeoutError）。
4. 把返回值编码为 JSON 兼容结构（失败 -> ResultEncodeError）。

以上任何一步失败都只影响当前这一次调用：对应位置返回 is_error=True 的
ToolCallResult，同一轮的其他调用照常执行。invoke_all 总是按请求顺序
返回与请求数量相同的结果。

超时说明：Python 线程无法被强制终止，超时的同步工具函数会在自己的线程里
继续跑完，其结果被丢弃，不会阻塞本轮其他调用。
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import inspect
import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union
from uuid import uuid4

from pydantic_core import PydanticSerializationError, to_jsonable_python

from toolcall_core.config.settings import settings
from toolcall_core.domain.exceptions import (
    CallableExecutionError,
    ResultEncodeError,
    ToolError,
    ToolTimeoutError,
)
from toolcall_core.infrastructure.logging.logger import log_event
from .definitions import ToolCallRequest, ToolCallResult, ToolContext, ToolDefinition
from .registry import ToolRegistry
from .trace import CallTraceRecorder


_UNSET: Any = object()

ContextLike = Union[ToolContext, Mapping[str, Any], None]


def encode_output(value: Any) -> Any:
    """把工具返回值转换为 JSON 兼容的结构（dict / list / 标量）。

    dataclass、pydantic 模型、datetime、UUID、set、tuple 等都会被结构化展开。

    Raises:
        ResultEncodeError: 无法编码，或包含 NaN / Infinity。
    """

    try:
        encoded = to_jsonable_python(value)
        json.dumps(encoded, ensure_ascii=False, allow_nan=False)
    except (PydanticSerializationError, TypeError, ValueError) as exc:
        raise ResultEncodeError(
            f"Tool result of type {type(value).__name__} is not JSON-encodable: {exc}",
            details={"result_type": type(value).__name__},
        )
    return encoded


def _as_context(context: ContextLike) -> ToolContext:
    if isinstance(context, ToolContext):
        return context
    return ToolContext(context)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)


async def _await(awaitable: Any) -> Any:
    return await awaitable


def _run_awaitable(awaitable: Any) -> Any:
    """在同步调用路径上跑完协程；当前线程已有事件循环时改用独立线程。"""

    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(_await(awaitable))
    with ThreadPoolExecutor(max_workers=1, thread_name_prefix="toolcall-async") as pool:
        return pool.submit(asyncio.run, _await(awaitable)).result()


class ToolInvoker:
    """按批次执行模型发起的工具调用。

    未显式传入的参数取自 ``toolcall_core.config.settings``。
    """

    def __init__(
        self,
        registry: ToolRegistry,
        timeout: Optional[float] = _UNSET,
        max_workers: Optional[int] = None,
        parallel: Optional[bool] = None,
        strict: Optional[bool] = None,
        trace: Optional[CallTraceRecorder] = _UNSET,
    ):
        self._registry = registry
        self._timeout = settings.invoke_timeout if timeout is _UNSET else (timeout or None)
        self._max_workers = max(1, max_workers or settings.max_workers)
        self._parallel = settings.parallel_calls if parallel is None else parallel
        self._strict = settings.strict_arguments if strict is None else strict
        if trace is _UNSET:
            trace = CallTraceRecorder(settings.trace_dir) if settings.trace_dir else None
        self._trace = trace

    # ------------------------------------------------------------------
    # 同步接口
    # ------------------------------------------------------------------

    def invoke(self, request: ToolCallRequest, context: ContextLike = None) -> ToolCallResult:
        """执行单个调用，永不抛出 ToolError。"""

        return self._invoke_one(request, _as_context(context), {"call_id": request.call_id})

    def invoke_all(
        self,
        requests: Iterable[ToolCallRequest],
        context: ContextLike = None,
    ) -> List[ToolCallResult]:
        """执行同一轮内的全部调用，结果顺序与 requests 一致。"""

        batch = list(requests)
        ctx = _as_context(context)
        batch_id, started_at, log_ctx = self._begin_batch(batch)
        if not batch:
            return []

        results: List[Optional[ToolCallResult]] = [None] * len(batch)
        if self._parallel and len(batch) > 1:
            workers = min(self._max_workers, len(batch))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="toolcall") as pool:
                futures = {
                    pool.submit(self._invoke_one, request, ctx, log_ctx): index
                    for index, request in enumerate(batch)
                }
                for future in as_completed(futures):
                    results[futures[future]] = future.result()
        else:
            for index, request in enumerate(batch):
                results[index] = self._invoke_one(request, ctx, log_ctx)

        return self._finish_batch(batch_id, started_at, batch, results, log_ctx)

    def _invoke_one(
        self,
        request: ToolCallRequest,
        context: ToolContext,
        log_ctx: Dict[str, Any],
    ) -> ToolCallResult:
        start = time.perf_counter()
        call_ctx = {**log_ctx, "call_id": request.call_id, "tool_name": request.tool_name}
        try:
            definition = self._registry.resolve(request.tool_name)
            arguments = definition.shape.decode(request.raw_arguments, strict=self._strict)
            value = self._call(definition, self._call_args(definition, arguments, context), call_ctx)
            output = encode_output(value)
        except ToolError as exc:
            return self._failure(request, exc, start, call_ctx)
        return self._success(request, output, start, call_ctx)

    def _call(self, definition: ToolDefinition, args: Tuple[Any, ...], call_ctx: Dict[str, Any]) -> Any:
        if self._timeout is None:
            return self._run_callable(definition, args, call_ctx)
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"toolcall-{definition.name}")
        try:
            future = executor.submit(self._run_callable, definition, args, call_ctx)
            try:
                return future.result(timeout=self._timeout)
            except concurrent.futures.TimeoutError:
                future.cancel()
                raise self._timeout_error(definition)
        finally:
            executor.shutdown(wait=False)

    @staticmethod
    def _run_callable(definition: ToolDefinition, args: Tuple[Any, ...], call_ctx: Dict[str, Any]) -> Any:
        try:
            result = definition.func(*args)
            if inspect.isawaitable(result):
                result = _run_awaitable(result)
            return result
        except ToolError:
            raise
        except Exception as exc:
            raise _execution_error(definition, exc, call_ctx) from exc

    # ------------------------------------------------------------------
    # 异步接口
    # ------------------------------------------------------------------

    async def ainvoke(self, request: ToolCallRequest, context: ContextLike = None) -> ToolCallResult:
        return await self._ainvoke_one(request, _as_context(context), {"call_id": request.call_id})

    async def ainvoke_all(
        self,
        requests: Iterable[ToolCallRequest],
        context: ContextLike = None,
    ) -> List[ToolCallResult]:
        """invoke_all 的异步版本。

        协程工具直接在事件循环上执行，普通函数通过 asyncio.to_thread 执行，
        并发数受 max_workers 限制。
        """

        batch = list(requests)
        ctx = _as_context(context)
        batch_id, started_at, log_ctx = self._begin_batch(batch)
        if not batch:
            return []

        if self._parallel and len(batch) > 1:
            semaphore = asyncio.Semaphore(self._max_workers)

            async def guarded(request: ToolCallRequest) -> ToolCallResult:
                async with semaphore:
                    return await self._ainvoke_one(request, ctx, log_ctx)

            results: List[Optional[ToolCallResult]] = list(
                await asyncio.gather(*(guarded(request) for request in batch))
            )
        else:
            results = []
            for request in batch:
                results.append(await self._ainvoke_one(request, ctx, log_ctx))

        return self._finish_batch(batch_id, started_at, batch, results, log_ctx)

    async def _ainvoke_one(
        self,
        request: ToolCallRequest,
        context: ToolContext,
        log_ctx: Dict[str, Any],
    ) -> ToolCallResult:
        start = time.perf_counter()
        call_ctx = {**log_ctx, "call_id": request.call_id, "tool_name": request.tool_name}
        try:
            definition = self._registry.resolve(request.tool_name)
            arguments = definition.shape.decode(request.raw_arguments, strict=self._strict)
            args = self._call_args(definition, arguments, context)
            if inspect.iscoroutinefunction(definition.func):
                pending = self._run_coroutine(definition, args, call_ctx)
            else:
                pending = asyncio.to_thread(self._run_callable, definition, args, call_ctx)
            if self._timeout is None:
                value = await pending
            else:
                try:
                    value = await asyncio.wait_for(pending, timeout=self._timeout)
                except asyncio.TimeoutError:
                    raise self._timeout_error(definition)
            output = encode_output(value)
        except ToolError as exc:
            return self._failure(request, exc, start, call_ctx)
        return self._success(request, output, start, call_ctx)

    @staticmethod
    async def _run_coroutine(definition: ToolDefinition, args: Tuple[Any, ...], call_ctx: Dict[str, Any]) -> Any:
        try:
            return await definition.func(*args)
        except ToolError:
            raise
        except Exception as exc:
            raise _execution_error(definition, exc, call_ctx) from exc

    # ------------------------------------------------------------------
    # 公共辅助
    # ------------------------------------------------------------------

    @staticmethod
    def _call_args(definition: ToolDefinition, arguments: Any, context: ToolContext) -> Tuple[Any, ...]:
        if definition.accepts_context:
            return (arguments, context)
        return (arguments,)

    def _timeout_error(self, definition: ToolDefinition) -> ToolTimeoutError:
        return ToolTimeoutError(
            f"Tool '{definition.name}' timed out after {self._timeout}s",
            details={"timeout": self._timeout},
        )

    def _begin_batch(self, batch: List[ToolCallRequest]) -> Tuple[str, str, Dict[str, Any]]:
        batch_id = f"batch-{uuid4().hex}"
        started_at = datetime.now(timezone.utc).isoformat()
        log_ctx: Dict[str, Any] = {"batch_id": batch_id}
        log_event(
            logging.INFO,
            "Invoking tool batch",
            log_ctx,
            size=len(batch),
            tools=[r.tool_name for r in batch],
        )
        return batch_id, started_at, log_ctx

    def _finish_batch(
        self,
        batch_id: str,
        started_at: str,
        batch: List[ToolCallRequest],
        results: List[Optional[ToolCallResult]],
        log_ctx: Dict[str, Any],
    ) -> List[ToolCallResult]:
        missing = [batch[i].call_id for i, r in enumerate(results) if r is None]
        if missing:
            raise RuntimeError(f"Tool batch {batch_id} finished without results for {missing}")
        final: List[ToolCallResult] = [r for r in results if r is not None]
        if self._trace is not None:
            try:
                self._trace.record_batch(batch_id, batch, final, started_at)
            except OSError as exc:
                log_event(logging.WARNING, "Failed to write tool trace", log_ctx, error=str(exc))
        log_event(
            logging.INFO,
            "Completed tool batch",
            log_ctx,
            size=len(final),
            error_count=sum(1 for r in final if r.is_error),
        )
        return final

    @staticmethod
    def _success(
        request: ToolCallRequest,
        output: Any,
        start: float,
        call_ctx: Dict[str, Any],
    ) -> ToolCallResult:
        elapsed = _elapsed_ms(start)
        log_event(logging.INFO, "Tool call finished", call_ctx, elapsed_ms=elapsed, is_error=False)
        return ToolCallResult(
            call_id=request.call_id,
            tool_name=request.tool_name,
            output=output,
            elapsed_ms=elapsed,
        )

    @staticmethod
    def _failure(
        request: ToolCallRequest,
        error: ToolError,
        start: float,
        call_ctx: Dict[str, Any],
    ) -> ToolCallResult:
        elapsed = _elapsed_ms(start)
        log_event(
            logging.WARNING,
            "Tool call failed",
            call_ctx,
            elapsed_ms=elapsed,
            is_error=True,
            code=error.code,
            error=error.message,
        )
        return ToolCallResult.failure(request, error, elapsed)


def _execution_error(definition: ToolDefinition, exc: Exception, call_ctx: Dict[str, Any]) -> CallableExecutionError:
    log_event(logging.ERROR, "Tool raised an exception", call_ctx, exc_info=True)
    return CallableExecutionError(
        f"Tool '{definition.name}' failed: {exc}",
        details={"exception_type": type(exc).__name__},
    )
