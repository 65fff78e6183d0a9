from __future__ import annotations

import asyncio
import functools
import inspect
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Set, Union

from mcpkit.core import logging as core_logging
from mcpkit.core.models import TimeoutPolicy, ToolDefinition, ToolResultEnvelope
from mcpkit.core.schemas import Schema, SchemaValidationError, as_input_schema, as_output_schema

from .errors import (
    DuplicateToolError,
    InputValidationError,
    MissingHandlerError,
    OutputValidationError,
    ToolCancelledError,
    ToolError,
    ToolExecutionError,
    ToolRegistrationError,
    ToolTimeoutError,
    UnknownToolError,
)

LOGGER = core_logging.get_logger("tool_runtime")

ToolHandler = Callable[..., Union[Any, Awaitable[Any]]]
CancelCallback = Callable[[], None]


class InvocationContext:
    """Per-call state handed to handlers that accept a second argument.

    The cancellation signal is advisory. The runtime sets it when the
    effective timeout elapses; a handler that never looks at it keeps
    running in the background after the caller got ``ToolTimeoutError``.
    The signal is thread-safe so plain-function handlers, which run in a
    worker thread, can poll it or ``wait`` on it.
    """

    def __init__(self, tool_name: str, timeout_ms: Optional[int] = None) -> None:
        self.tool_name = tool_name
        self.timeout_ms = timeout_ms
        self.cancel_reason: Optional[str] = None
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[CancelCallback] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        with self._lock:
            if self._event.is_set():
                return
            self.cancel_reason = reason
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:  # noqa: BLE001
                LOGGER.exception("cancel_callback_failed", tool=self.tool_name)

    def on_cancel(self, callback: CancelCallback) -> None:
        """Run ``callback`` once cancellation is signalled (now, if it already was)."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def wait(self, timeout_s: Optional[float] = None) -> bool:
        """Block until cancelled or ``timeout_s`` passes; True when cancelled."""
        return self._event.wait(timeout_s)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ToolCancelledError(self.tool_name, self.cancel_reason or "cancelled")


@dataclass(frozen=True)
class RegisteredTool:
    definition: ToolDefinition
    input_schema: Schema
    output_schema: Schema
    handler: ToolHandler
    timeout_ms: Optional[int]
    passes_context: bool

    @property
    def name(self) -> str:
        return self.definition.name


class ToolRuntime:
    """Registry plus dispatcher for schema-described tools.

    The table is filled by ``register`` at startup and only read afterwards,
    so concurrent ``invoke`` calls share no mutable state.
    """

    def __init__(self, max_output_bytes: Optional[int] = None) -> None:
        self._tools: Dict[str, RegisteredTool] = {}
        self._abandoned: Set[asyncio.Future[Any]] = set()
        self.max_output_bytes = max_output_bytes

    def register(
        self,
        definitions: Sequence[ToolDefinition],
        handlers: Mapping[str, ToolHandler],
        timeout_policy: Optional[TimeoutPolicy] = None,
    ) -> None:
        policy = timeout_policy or TimeoutPolicy()
        names: List[str] = []
        seen = set(self._tools)
        for definition in definitions:
            if definition.name in seen:
                raise DuplicateToolError(definition.name)
            seen.add(definition.name)
            names.append(definition.name)

        missing = [name for name in names if name not in handlers]
        if missing:
            raise MissingHandlerError(missing)
        orphans = sorted(set(handlers) - set(names))
        if orphans:
            raise ToolRegistrationError(f"Handlers without a tool definition: {', '.join(orphans)}")
        unknown_timeouts = sorted(set(policy.per_tool_timeout_ms) - set(names))
        if unknown_timeouts:
            raise ToolRegistrationError(
                f"Timeout configured for unknown tool(s): {', '.join(unknown_timeouts)}"
            )

        staged: Dict[str, RegisteredTool] = {}
        for definition in definitions:
            handler = handlers[definition.name]
            if not callable(handler):
                raise ToolRegistrationError(f"Handler for tool '{definition.name}' is not callable")
            try:
                input_schema = as_input_schema(definition.input_schema, definition.name)
                output_schema = as_output_schema(definition.output_schema)
            except (TypeError, ValueError) as exc:
                raise ToolRegistrationError(
                    f"Invalid schema for tool '{definition.name}': {exc}"
                ) from exc
            staged[definition.name] = RegisteredTool(
                definition=definition,
                input_schema=input_schema,
                output_schema=output_schema,
                handler=handler,
                timeout_ms=policy.resolve(definition.name),
                passes_context=_accepts_context(handler),
            )
        self._tools.update(staged)
        LOGGER.info(
            "tools_registered",
            tools=names,
            timeouts_ms={name: tool.timeout_ms for name, tool in staged.items()},
        )

    def list_tools(self) -> List[RegisteredTool]:
        return list(self._tools.values())

    def get(self, name: str) -> RegisteredTool:
        if name not in self._tools:
            raise UnknownToolError(name)
        return self._tools[name]

    @property
    def abandoned_count(self) -> int:
        """Handlers still running after their invocation timed out."""
        return len(self._abandoned)

    async def invoke(self, name: str, arguments: Any = None) -> ToolResultEnvelope:
        started = time.monotonic()
        log = LOGGER.bind(tool=name)
        try:
            tool = self.get(name)
            log.info("tool_invoked", timeout_ms=tool.timeout_ms)
            envelope = await self._invoke(tool, arguments)
        except ToolError as exc:
            log.warning(
                "tool_failed",
                error_code=exc.error_code,
                error=str(exc),
                duration_ms=_elapsed_ms(started),
            )
            raise
        log.info("tool_completed", duration_ms=_elapsed_ms(started))
        return envelope

    async def _invoke(self, tool: RegisteredTool, arguments: Any) -> ToolResultEnvelope:
        try:
            params = tool.input_schema.validate({} if arguments is None else arguments)
        except SchemaValidationError as exc:
            raise InputValidationError(tool.name, exc.violations) from exc

        context = InvocationContext(tool.name, tool.timeout_ms)
        if tool.timeout_ms is None:
            result = await self._call_handler(tool, params, context)
        else:
            result = await self._call_with_timeout(tool, params, context)

        try:
            validated = tool.output_schema.validate(result)
        except SchemaValidationError as exc:
            raise OutputValidationError(tool.name, str(exc), exc.violations) from exc
        try:
            text = tool.output_schema.serialize(validated)
        except (TypeError, ValueError) as exc:
            raise OutputValidationError(tool.name, f"result is not serializable: {exc}") from exc
        if self.max_output_bytes is not None and len(text.encode("utf-8")) > self.max_output_bytes:
            raise OutputValidationError(
                tool.name, f"output exceeded max size of {self.max_output_bytes} bytes"
            )
        return ToolResultEnvelope.from_text(text)

    async def _call_with_timeout(
        self, tool: RegisteredTool, params: Any, context: InvocationContext
    ) -> Any:
        assert tool.timeout_ms is not None
        task = asyncio.ensure_future(self._call_handler(tool, params, context))
        try:
            done, _pending = await asyncio.wait({task}, timeout=tool.timeout_ms / 1000)
        except asyncio.CancelledError:
            context.cancel("caller_cancelled")
            self._abandon(tool.name, task)
            raise
        if task in done:
            return task.result()
        context.cancel("timeout")
        self._abandon(tool.name, task)
        raise ToolTimeoutError(tool.name, tool.timeout_ms)

    async def _call_handler(
        self, tool: RegisteredTool, params: Any, context: InvocationContext
    ) -> Any:
        args = (params, context) if tool.passes_context else (params,)
        try:
            if inspect.iscoroutinefunction(tool.handler):
                return await tool.handler(*args)
            # Blocking handlers run off the loop so the countdown can still win.
            result = await asyncio.to_thread(tool.handler, *args)
            if inspect.isawaitable(result):
                result = await result
            return result
        except Exception as exc:  # noqa: BLE001
            raise ToolExecutionError(tool.name, exc) from exc

    def _abandon(self, name: str, task: asyncio.Future[Any]) -> None:
        self._abandoned.add(task)
        task.add_done_callback(functools.partial(self._reap, name))

    def _reap(self, name: str, task: asyncio.Future[Any]) -> None:
        self._abandoned.discard(task)
        if task.cancelled():
            LOGGER.info("abandoned_tool_cancelled", tool=name)
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.warning("abandoned_tool_failed", tool=name, error=str(exc))
        else:
            LOGGER.info("abandoned_tool_finished", tool=name)


def create_tool_runtime(
    definitions: Sequence[ToolDefinition],
    handlers: Mapping[str, ToolHandler],
    timeout_policy: Optional[TimeoutPolicy] = None,
    *,
    max_output_bytes: Optional[int] = None,
) -> ToolRuntime:
    runtime = ToolRuntime(max_output_bytes=max_output_bytes)
    runtime.register(definitions, handlers, timeout_policy)
    return runtime


def _accepts_context(handler: ToolHandler) -> bool:
    try:
        signature = inspect.signature(handler)
    except (TypeError, ValueError):
        return True
    positional = 0
    for parameter in signature.parameters.values():
        if parameter.kind is inspect.Parameter.VAR_POSITIONAL:
            return True
        if parameter.kind in (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
        ):
            positional += 1
    return positional >= 2


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
