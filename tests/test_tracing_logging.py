"""
Tests for stage tracing and structured JSON logging.
"""

import json
import logging

import pytest

from persona_core.obs.logging import JsonFormatter, get_logger
from persona_core.obs.tracing import (
    InMemorySpanCollector,
    Tracer,
    current_trace_id,
    new_trace,
    reset_trace,
    trace_call,
)


class Component:
    def __init__(self, tracer):
        self.tracer = tracer

    @trace_call("component.work")
    async def work(self, value):
        return value * 2

    @trace_call("component.fail")
    async def fail(self):
        raise RuntimeError("boom")

    @trace_call()
    def sync_work(self):
        return "done"


class TestTracer:
    @pytest.mark.asyncio
    async def test_stage_exports_span(self, tracer, collector):
        async with tracer.stage("unit.stage", thread_id="t1") as span:
            assert span.name == "unit.stage"

        assert collector.names() == ["unit.stage"]
        exported = collector.spans[0]
        assert exported.error is None
        assert exported.attributes == {"thread_id": "t1"}
        assert exported.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_stage_records_error_and_reraises(self, tracer, collector):
        with pytest.raises(ValueError):
            async with tracer.stage("unit.failing"):
                raise ValueError("bad input")

        assert collector.spans[0].error == "ValueError: bad input"

    @pytest.mark.asyncio
    async def test_failing_hook_does_not_break_stage(self, collector):
        def broken(span):
            raise RuntimeError("hook down")

        tracer = Tracer(hooks=[broken, collector])
        async with tracer.stage("unit.stage"):
            pass
        assert collector.names() == ["unit.stage"]

    def test_hooks_can_be_removed(self, collector):
        tracer = Tracer(hooks=[collector])
        tracer.remove_hook(collector)
        assert tracer.hooks == []

    def test_collector_is_bounded(self):
        collector = InMemorySpanCollector(max_spans=2)
        tracer = Tracer(hooks=[collector])
        component = Component(tracer)
        for _ in range(3):
            component.sync_work()
        assert len(collector.spans) == 2


class TestTraceCall:
    @pytest.mark.asyncio
    async def test_decorator_uses_instance_tracer(self, tracer, collector):
        component = Component(tracer)
        assert await component.work(21) == 42
        assert collector.names() == ["component.work"]

    @pytest.mark.asyncio
    async def test_decorator_propagates_errors(self, tracer, collector):
        component = Component(tracer)
        with pytest.raises(RuntimeError):
            await component.fail()
        assert collector.spans[0].error == "RuntimeError: boom"

    def test_sync_callable_defaults_to_function_name(self, tracer, collector):
        component = Component(tracer)
        assert component.sync_work() == "done"
        assert collector.names() == ["sync_work"]

    @pytest.mark.asyncio
    async def test_spans_of_one_trace_share_an_id(self, tracer, collector):
        token = new_trace()
        try:
            trace_id = current_trace_id()
            async with tracer.stage("outer"):
                async with tracer.stage("inner"):
                    pass
        finally:
            reset_trace(token)

        assert [s.trace_id for s in collector.spans] == [trace_id, trace_id]
        assert collector.names() == ["inner", "outer"]


class TestJsonFormatter:
    def test_structured_fields_are_emitted(self):
        record = logging.LogRecord("persona_core", logging.INFO, __file__, 1, "Persona switched", None, None)
        record.thread_id = "t1"
        record.from_persona = "casual"
        record.to_persona = "coder"
        record.unrelated = "dropped"

        payload = json.loads(JsonFormatter().format(record))
        assert payload["msg"] == "Persona switched"
        assert payload["level"] == "info"
        assert payload["thread_id"] == "t1"
        assert payload["from_persona"] == "casual"
        assert payload["to_persona"] == "coder"
        assert "unrelated" not in payload

    def test_get_logger_installs_one_handler(self):
        first = get_logger("persona_core.test_handlers")
        second = get_logger("persona_core.test_handlers")
        assert first is second
        assert len(first.handlers) == 1
        assert isinstance(first.handlers[0].formatter, JsonFormatter)
