from __future__ import annotations
import inspect
import time
import uuid
import contextvars
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import wraps
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, TypeVar, cast

from .logging import get_logger

T = TypeVar("T")

# Trace id shared by every stage of one pipeline run
_current_trace_id: contextvars.ContextVar[str | None] = contextvars.ContextVar("trace_id", default=None)


def current_trace_id() -> str:
    tid = _current_trace_id.get()
    if not tid:
        tid = uuid.uuid4().hex
        _current_trace_id.set(tid)
    return tid


def new_trace() -> contextvars.Token:
    """Start a fresh trace id for the current context. Returns the reset token."""
    return _current_trace_id.set(uuid.uuid4().hex)


def reset_trace(token: contextvars.Token) -> None:
    _current_trace_id.reset(token)


@dataclass
class Span:
    """One traced stage."""
    name: str
    trace_id: str
    start_ts: str
    duration_ms: int = 0
    error: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "trace_id": self.trace_id,
            "start_ts": self.start_ts,
            "duration_ms": self.duration_ms,
            "error": self.error,
            "attributes": dict(self.attributes),
        }


SpanHook = Callable[[Span], None]


class InMemorySpanCollector:
    """
    Span hook that keeps finished spans in memory.

    Usage:
        collector = InMemorySpanCollector()
        tracer = Tracer(hooks=[collector])
        ...
        names = [s.name for s in collector.spans]
    """

    def __init__(self, max_spans: int = 1000):
        self.max_spans = max_spans
        self.spans: List[Span] = []

    def __call__(self, span: Span) -> None:
        self.spans.append(span)
        if len(self.spans) > self.max_spans:
            del self.spans[: len(self.spans) - self.max_spans]

    def names(self) -> List[str]:
        return [s.name for s in self.spans]

    def clear(self) -> None:
        self.spans.clear()


class Tracer:
    """
    Wraps pipeline stages and hands finished spans to an interceptor list.

    Hooks are plain callables receiving a Span. A failing hook is logged and
    skipped; it never breaks the traced stage.
    """

    def __init__(self, hooks: Optional[List[SpanHook]] = None, level: str = "debug"):
        self.hooks: List[SpanHook] = list(hooks or [])
        self.level = level.lower()
        self._log = get_logger("persona_core.trace")

    def add_hook(self, hook: SpanHook) -> None:
        self.hooks.append(hook)

    def remove_hook(self, hook: SpanHook) -> None:
        if hook in self.hooks:
            self.hooks.remove(hook)

    def _export(self, span: Span) -> None:
        for hook in list(self.hooks):
            try:
                hook(span)
            except Exception as e:
                self._log.warning(f"span hook failed: {e}", extra={"stage": span.name, "error_code": type(e).__name__})

    @asynccontextmanager
    async def stage(self, name: str, **attributes: Any) -> AsyncIterator[Span]:
        """Trace an async block as one span."""
        span = Span(name=name, trace_id=current_trace_id(), start_ts=datetime.now(timezone.utc).isoformat(), attributes=attributes)
        t0 = time.monotonic()
        getattr(self._log, self.level)(f"start {name}", extra={"trace_id": span.trace_id, "stage": name})
        try:
            yield span
        except Exception as e:
            span.duration_ms = int((time.monotonic() - t0) * 1000)
            span.error = f"{type(e).__name__}: {e}"
            self._log.error(f"error {name}: {e}", extra={"trace_id": span.trace_id, "stage": name, "duration_ms": span.duration_ms, "error_code": type(e).__name__})
            self._export(span)
            raise
        span.duration_ms = int((time.monotonic() - t0) * 1000)
        getattr(self._log, self.level)(f"end {name}", extra={"trace_id": span.trace_id, "stage": name, "duration_ms": span.duration_ms})
        self._export(span)


_default_tracer: Tracer | None = None


def get_tracer() -> Tracer:
    """Get or create the process-wide tracer used when none is injected."""
    global _default_tracer
    if _default_tracer is None:
        _default_tracer = Tracer()
    return _default_tracer


def trace_call(name: Optional[str] = None) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Tracing decorator for sync and async callables.

    When the wrapped callable is a method whose instance carries a `tracer`
    attribute, that tracer receives the span; otherwise the process-wide
    tracer does.
    """
    def decorator(fn: Callable[..., T]) -> Callable[..., T]:
        lbl = name or fn.__name__

        def _resolve(args: tuple) -> Tracer:
            if args:
                tracer = getattr(args[0], "tracer", None)
                if isinstance(tracer, Tracer):
                    return tracer
            return get_tracer()

        if inspect.iscoroutinefunction(fn):
            @wraps(fn)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                async with _resolve(args).stage(lbl):
                    return await fn(*args, **kwargs)
            return cast(Callable[..., T], async_wrapper)

        @wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            tracer = _resolve(args)
            span = Span(name=lbl, trace_id=current_trace_id(), start_ts=datetime.now(timezone.utc).isoformat())
            t0 = time.monotonic()
            try:
                res = fn(*args, **kwargs)
            except Exception as e:
                span.duration_ms = int((time.monotonic() - t0) * 1000)
                span.error = f"{type(e).__name__}: {e}"
                tracer._export(span)
                raise
            span.duration_ms = int((time.monotonic() - t0) * 1000)
            tracer._export(span)
            return res
        return wrapper
    return decorator
