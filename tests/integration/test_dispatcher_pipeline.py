"""Integration tests for the dispatcher pipeline around a single operation.

Covers retry and cancellation, span recording, model parameter selection,
cost accounting toggles and the dispatcher factory.
"""

import asyncio
import dataclasses
import logging

from pydantic import BaseModel
import pytest

from schemaflow.client import CancelToken, ScriptedInvoker, tag_error
from schemaflow.config import resolve_config
from schemaflow.core.types import (
    ErrorClass,
    Intelligence,
    InvokeOptions,
    Mode,
    RawResponse,
    TokenUsage,
)
from schemaflow.dispatcher import OperationDispatcher, OperationOptions, create_dispatcher
from schemaflow.efficiency import CostLedger
from schemaflow.exceptions import ClassifyError, ExtractError, ScoreError


class Person(BaseModel):
    name: str
    age: int


class SlowInvoker:
    """Invoker that never answers in time."""

    name = "slow"

    def __init__(self, delay: float = 5.0) -> None:
        self.delay = delay
        self.started = 0

    async def invoke(
        self, system_prompt: str, user_prompt: str, options: InvokeOptions
    ) -> RawResponse:
        self.started += 1
        await asyncio.sleep(self.delay)
        return RawResponse(text='"late"', model=options.model)


class TestRetry:
    """Transient failures are retried; permanent ones are not."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_retry_then_success(self, make_dispatcher, tracer):
        dispatcher, invoker = make_dispatcher(
            RuntimeError("503 service unavailable"), '{"name": "Ada", "age": 36}'
        )

        result = await dispatcher.extract("Ada, 36", Person)

        assert result.value.name == "Ada"
        assert result.metadata.attempts == 2
        assert invoker.call_count == 2
        (span,) = tracer.spans(name="schemaflow.extract")
        assert [e.attributes["number"] for e in span.events if e.name == "attempt"] == [1, 2]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_exhaustion_is_retryable_and_costs_nothing(self, make_dispatcher, ledger):
        dispatcher, invoker = make_dispatcher(RuntimeError("rate limit exceeded"))

        with pytest.raises(ExtractError) as exc_info:
            await dispatcher.extract("Ada", Person)

        assert exc_info.value.error_class is ErrorClass.RETRYABLE
        assert "failed after 3 attempts" in str(exc_info.value)
        assert invoker.call_count == 3
        assert len(ledger) == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_max_attempts_option(self, make_dispatcher):
        dispatcher, invoker = make_dispatcher(TimeoutError("upstream timeout"))

        with pytest.raises(ExtractError, match="failed after 1 attempts"):
            await dispatcher.extract("Ada", Person, OperationOptions(max_attempts=1))

        assert invoker.call_count == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("options", "field"),
        [
            (OperationOptions(max_attempts=0), "max_attempts"),
            (OperationOptions(timeout=0), "timeout"),
        ],
    )
    async def test_explicit_zero_option_is_not_replaced_by_default(
        self, make_dispatcher, options, field
    ):
        dispatcher, invoker = make_dispatcher('{"name": "Ada", "age": 36}')

        with pytest.raises(ExtractError, match=field):
            await dispatcher.extract("Ada", Person, options)

        assert invoker.call_count == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_tagged_error_keeps_its_class(self, make_dispatcher):
        denied = tag_error(RuntimeError("content policy"), ErrorClass.POLICY_DENIED)
        dispatcher, invoker = make_dispatcher(denied)

        with pytest.raises(ClassifyError) as exc_info:
            await dispatcher.classify("text", ["a", "b"])

        assert exc_info.value.error_class is ErrorClass.POLICY_DENIED
        assert invoker.call_count == 1


class TestCancellation:
    """Deadlines and cancel tokens end calls promptly."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_timeout(self, frozen_config, ledger):
        invoker = SlowInvoker()
        dispatcher = OperationDispatcher(invoker, frozen_config, ledger=ledger)

        with pytest.raises(ExtractError, match="deadline exceeded") as exc_info:
            await dispatcher.extract("Ada", Person, OperationOptions(timeout=0.05))

        assert exc_info.value.error_class is ErrorClass.PERMANENT
        assert invoker.started == 1
        assert len(ledger) == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_cancel_token(self, frozen_config):
        invoker = SlowInvoker()
        dispatcher = OperationDispatcher(invoker, frozen_config)
        token = CancelToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel)

        with pytest.raises(ScoreError, match="operation cancelled"):
            await dispatcher.score("essay", "clarity", OperationOptions(cancel=token))

        assert invoker.started == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, make_dispatcher):
        dispatcher, invoker = make_dispatcher('"x"')
        token = CancelToken()
        token.cancel()

        with pytest.raises(ExtractError, match="operation cancelled"):
            await dispatcher.extract("text", str, OperationOptions(cancel=token))

        assert invoker.call_count == 0


class TestTracing:
    """Each invoked operation produces one span with result tags."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_span_tags_and_events(self, make_dispatcher, tracer):
        dispatcher, _ = make_dispatcher('{"name": "Ada", "age": 36}')

        result = await dispatcher.extract(
            "Ada, 36", Person, OperationOptions(steering="x" * 300, request_id="req-7")
        )

        (span,) = tracer.spans(name="schemaflow.extract")
        assert result.metadata.span_id == span.span_id
        assert span.tags["operation"] == "extract"
        assert span.tags["request_id"] == "req-7"
        assert span.tags["mode"] == "transform"
        assert span.tags["intelligence"] == "fast"
        assert span.tags["confidence"] == pytest.approx(1.0)
        assert span.tags["attempts"] == 1
        assert span.tags["total_tokens"] == result.metadata.usage.total_tokens
        assert len(span.tags["steering"]) == 200
        assert [e.name for e in span.events] == ["attempt", "parsed"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_failed_operation_marks_span(self, make_dispatcher, tracer):
        dispatcher, _ = make_dispatcher("no number here")

        with pytest.raises(ScoreError):
            await dispatcher.score("essay", "clarity")

        (span,) = tracer.spans(name="schemaflow.score")
        assert span.tags["status"] == "error"
        assert span.tags["error_type"] == "ParseError"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_trace_disabled(self, frozen_config):
        config = dataclasses.replace(frozen_config, trace=False)
        dispatcher = OperationDispatcher(ScriptedInvoker(['"ok"']), config)

        result = await dispatcher.extract("text", str)

        assert result.metadata.span_id
        assert dispatcher.tracer.spans() == []


class TestPromptAndModel:
    """Steering placement and generation parameters."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_steering_is_appended_to_user_prompt(self, make_dispatcher):
        dispatcher, invoker = make_dispatcher('"positive"')

        await dispatcher.classify(
            "Nice!", ["positive", "negative"], OperationOptions(steering="Be lenient.")
        )

        user = invoker.calls[0].user_prompt
        assert user.endswith("Additional Context:\nBe lenient.")
        assert "Be lenient." not in invoker.calls[0].system_prompt

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_smart_tier_parameters(self, make_dispatcher):
        dispatcher, invoker = make_dispatcher('{"name": "Ada", "age": 36}')

        result = await dispatcher.extract(
            "Ada", Person, OperationOptions(intelligence=Intelligence.SMART, mode=Mode.STRICT)
        )

        options = invoker.calls[0].options
        assert options.model == "gpt-5-2025-08-07"
        assert options.max_tokens == 4000
        assert options.temperature == 0.1
        assert options.response_schema is not None
        assert options.response_schema["title"] == "Person"
        assert result.metadata.model == "gpt-5-2025-08-07"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_creative_temperature_and_plain_schema(self, make_dispatcher):
        dispatcher, invoker = make_dispatcher('"a poem"')

        await dispatcher.generate("Write a poem", str, OperationOptions(mode=Mode.CREATIVE))

        options = invoker.calls[0].options
        assert options.temperature == 0.7
        assert options.max_tokens == 2000
        assert options.response_schema is None

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_configured_model_overrides(self, make_dispatcher):
        dispatcher, invoker = make_dispatcher('"ok"', model="my-model", model_quick="tiny")

        await dispatcher.extract("text", str)
        await dispatcher.extract("text", str, OperationOptions(intelligence=Intelligence.QUICK))

        assert [c.options.model for c in invoker.calls] == ["my-model", "tiny"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_debug_logs_prompts(self, make_dispatcher, caplog):
        dispatcher, _ = make_dispatcher('"ok"', debug=True)

        with caplog.at_level(logging.DEBUG, logger="schemaflow.dispatcher"):
            await dispatcher.extract("secret input text", str)

        assert "System prompt:" in caplog.text
        assert "secret input text" in caplog.text


class TestCostAccounting:
    """Every answered invocation is priced and recorded when metrics are on."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_cost_uses_reported_usage(self, make_dispatcher, ledger):
        usage = TokenUsage(prompt_tokens=1000, completion_tokens=500)
        dispatcher, _ = make_dispatcher(RawResponse('"ok"', usage=usage, model="gpt-4"))

        result = await dispatcher.extract(
            "text", str, OperationOptions(request_id="r-1", tags={"team": "ops"})
        )

        assert result.metadata.model == "gpt-4"
        assert result.metadata.cost.total == pytest.approx(0.03 + 0.03)
        (record,) = ledger.records()
        assert record.request_id == "r-1"
        assert record.model == "gpt-4"
        assert record.tags["team"] == "ops"
        assert record.usage == usage
        assert ledger.get_total_cost(filters={"team": "ops"}) == pytest.approx(0.06)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_metrics_disabled_keeps_ledger_empty(self, make_dispatcher, ledger):
        dispatcher, _ = make_dispatcher('"ok"', metrics=False)

        result = await dispatcher.extract("text", str)

        assert result.metadata.cost.total > 0
        assert len(ledger) == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_concurrent_operations_share_one_ledger(self, make_dispatcher, ledger):
        dispatcher, _ = make_dispatcher(lambda system, user, opts: '"ok"')

        results = await asyncio.gather(
            *(
                dispatcher.extract(f"item {i}", str, OperationOptions(request_id=f"r{i}"))
                for i in range(20)
            )
        )

        assert [r.value for r in results] == ["ok"] * 20
        assert len(ledger) == 20
        assert {r.request_id for r in ledger.records()} == {f"r{i}" for i in range(20)}
        assert ledger.get_total_cost() == pytest.approx(
            sum(r.metadata.cost.total for r in results)
        )


class TestCreateDispatcher:
    """The factory accepts every configuration form."""

    @pytest.mark.integration
    def test_defaults(self):
        dispatcher = create_dispatcher(ScriptedInvoker())
        assert dispatcher.config.provider == "openai"
        assert isinstance(dispatcher.ledger, CostLedger)

    @pytest.mark.integration
    def test_mapping_overrides(self):
        dispatcher = create_dispatcher(ScriptedInvoker(), {"provider": "anthropic"})
        assert dispatcher.config.provider == "anthropic"

    @pytest.mark.integration
    def test_resolved_and_frozen_configs(self):
        resolved = resolve_config({"max_attempts": 7})

        assert create_dispatcher(ScriptedInvoker(), resolved).config.max_attempts == 7
        frozen = resolved.to_frozen()
        assert create_dispatcher(ScriptedInvoker(), frozen).config is frozen

    @pytest.mark.integration
    def test_components_are_injected(self, ledger, tracer):
        dispatcher = create_dispatcher(ScriptedInvoker(), ledger=ledger, tracer=tracer)
        assert dispatcher.ledger is ledger
        assert dispatcher.tracer is tracer
