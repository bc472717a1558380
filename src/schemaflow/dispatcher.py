"""The primary user-facing entry point: typed LLM operations.

Every operation follows the same five steps, strictly in order:

1. validate the request, describe the target type, compose the prompt;
2. open a span and invoke the backend through the retry executor;
3. parse and score the output, rejecting it below the confidence threshold;
4. compute and record the cost of the tokens spent;
5. return an ``OperationResult`` or raise the operation's own error type.

Steps 3 and 4 run together: once the backend has answered, its cost is
recorded even if the answer is then rejected.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping, Sequence
import dataclasses
import logging
import time
from types import MappingProxyType
from typing import Any
import uuid

from schemaflow.analysis.schema_analyzer import SchemaAnalyzer
from schemaflow.analysis.type_descriptor import (
    TypeDescriptor,
    describe,
    json_schema,
    require_supported,
)
from schemaflow.client.error_handler import classify_error
from schemaflow.client.llm import LLMInvoker
from schemaflow.client.retry import CancelToken, RetryExecutor
from schemaflow.config import FrozenConfig, ResolvedConfig, resolve_config
from schemaflow.constants import (
    BATCH_MAX_CONCURRENT,
    MAX_GENERATE_PROMPT_CHARS,
    MAX_SPAN_STEERING_CHARS,
    STRICT_FILL_THRESHOLD,
)
from schemaflow.core.models import get_max_tokens, get_model, get_temperature
from schemaflow.core.types import (
    BatchResult,
    CostInfo,
    Intelligence,
    InvokeOptions,
    Mode,
    OperationRequest,
    OperationResult,
    RawResponse,
    ResultMetadata,
)
from schemaflow.efficiency.pricing import calculate_cost
from schemaflow.efficiency.tracking import CostLedger
from schemaflow.exceptions import (
    OPERATION_ERRORS,
    ChooseError,
    ClassifyError,
    FilterError,
    GenerateError,
    OperationError,
    ValidationError,
)
from schemaflow.prompts.composer import PromptComposer, normalize_input, number_items
from schemaflow.response.parsing import strip_quotes
from schemaflow.response.processor import ResponseParser
from schemaflow.response.quality import validate_extracted_data
from schemaflow.response.types import ParsedResult
from schemaflow.telemetry import Tracer

log = logging.getLogger(__name__)

# Maps a decoded value to the caller-facing value plus extra warnings.
type PostProcess = Callable[[Any], tuple[Any, list[str]]]


@dataclasses.dataclass(frozen=True, slots=True)
class OperationOptions:
    """Per-call knobs; unset values fall back to the dispatcher configuration."""

    mode: Mode | None = None
    intelligence: Intelligence | None = None
    steering: str = ""
    threshold: float | None = None
    fill_threshold: float | None = None
    max_attempts: int | None = None
    timeout: float | None = None
    request_id: str | None = None
    cancel: CancelToken | None = None
    tags: Mapping[str, str] = dataclasses.field(
        default_factory=lambda: MappingProxyType({})
    )

    def replace(self, **changes: Any) -> OperationOptions:
        return dataclasses.replace(self, **changes)


_DEFAULT_OPTIONS = OperationOptions()


class OperationDispatcher:
    """Runs typed operations against a pluggable LLM invoker.

    Collaborators (ledger, tracer, retry executor, parser, composer) are
    injectable so tests and applications can own isolated instances.
    """

    def __init__(
        self,
        invoker: LLMInvoker,
        config: FrozenConfig | None = None,
        *,
        ledger: CostLedger | None = None,
        tracer: Tracer | None = None,
        retry: RetryExecutor | None = None,
        parser: ResponseParser | None = None,
        composer: PromptComposer | None = None,
        analyzer: SchemaAnalyzer | None = None,
    ) -> None:
        self.invoker = invoker
        self.config = config if config is not None else resolve_config().to_frozen()
        self.ledger = ledger if ledger is not None else CostLedger()
        self.tracer = tracer if tracer is not None else Tracer(enabled=self.config.trace)
        self.retry = retry or RetryExecutor()
        self.parser = parser or ResponseParser()
        self.composer = composer or PromptComposer()
        self.analyzer = analyzer or SchemaAnalyzer()

    # --- Public operations ---

    async def extract[T](
        self,
        input: Any,  # noqa: A002, ANN401
        target: type[T],
        options: OperationOptions | None = None,
        *,
        hints: Mapping[str, str] | None = None,
        examples: Sequence[Any] = (),
    ) -> OperationResult[T]:
        """Extract a ``target`` value from unstructured or semi-structured input."""
        instructions: list[str] = []
        if hints:
            instructions.append("Field hints:")
            instructions.extend(f"- {k}: {v}" for k, v in sorted(hints.items()))
        if examples:
            instructions.append(
                "Examples of expected output:\n" + normalize_input(list(examples))
            )
        return await self._run(
            "extract",
            input,
            target,
            options,
            instructions=instructions,
            check_fill=True,
            require_input=True,
        )

    async def transform[T](
        self,
        input: Any,  # noqa: A002, ANN401
        target: type[T],
        options: OperationOptions | None = None,
        *,
        rules: Sequence[str] = (),
    ) -> OperationResult[T]:
        """Convert ``input`` into the ``target`` shape."""
        source = describe(type(input))
        source_text = source.render() if source.is_supported else "any"
        instructions = [f"Source shape:\n{source_text}"]
        if rules:
            instructions.append("Rules:")
            instructions.extend(f"- {rule}" for rule in rules)
        return await self._run(
            "transform",
            input,
            target,
            options,
            instructions=instructions,
            check_fill=True,
            require_input=True,
            error_kwargs={
                "from_type": type(input).__name__,
                "to_type": getattr(target, "__name__", repr(target)),
            },
        )

    async def generate[T](
        self,
        prompt: str,
        target: type[T],
        options: OperationOptions | None = None,
        *,
        constraints: Mapping[str, Any] | None = None,
    ) -> OperationResult[T]:
        """Generate a new ``target`` value from a natural-language prompt."""
        opts = options or _DEFAULT_OPTIONS
        if not isinstance(prompt, str) or not prompt.strip():
            raise GenerateError(
                "prompt cannot be empty",
                input=prompt,
                options=opts,
                request_id=opts.request_id or "",
            )
        extra_warnings: list[str] = []
        if len(prompt) > MAX_GENERATE_PROMPT_CHARS:
            log.warning(
                "Generate prompt truncated from %d to %d characters",
                len(prompt),
                MAX_GENERATE_PROMPT_CHARS,
            )
            extra_warnings.append(
                f"prompt truncated to {MAX_GENERATE_PROMPT_CHARS} characters"
            )
            prompt = prompt[:MAX_GENERATE_PROMPT_CHARS]

        instructions: list[str] = []
        if constraints:
            instructions.append("Constraints:")
            instructions.extend(
                f"- {k}: {normalize_input(v)}" for k, v in sorted(constraints.items())
            )
        return await self._run(
            "generate",
            prompt,
            target,
            opts,
            instructions=instructions,
            check_fill=True,
            extra_warnings=extra_warnings,
        )

    async def filter[T](
        self,
        items: Sequence[T],
        criteria: str,
        options: OperationOptions | None = None,
        *,
        keep: bool = True,
    ) -> OperationResult[list[T]]:
        """Items satisfying ``criteria`` (or failing it when ``keep`` is False), in input order."""
        opts = options or _DEFAULT_OPTIONS
        items = list(items)
        if not items:
            return self._immediate("filter", [], opts)
        if not criteria or not criteria.strip():
            raise FilterError(
                "criteria cannot be empty",
                input=items,
                options=opts,
                request_id=opts.request_id or "",
            )

        selection = "match" if keep else "do NOT match"
        instructions = [
            f"Criteria: {criteria}",
            f"Return a JSON array with the ids of the items that {selection} the criteria.",
        ]

        def _select(ids: list[int]) -> tuple[list[T], list[str]]:
            chosen = set(self._check_ids(ids, len(items)))
            return [item for i, item in enumerate(items) if i in chosen], []

        return await self._run(
            "filter",
            items,
            list[int],
            opts,
            prompt_input=number_items(items),
            instructions=instructions,
            postprocess=_select,
        )

    async def sort[T](
        self,
        items: Sequence[T],
        criteria: str,
        options: OperationOptions | None = None,
        *,
        descending: bool = False,
    ) -> OperationResult[list[T]]:
        """All items ordered by ``criteria``."""
        opts = options or _DEFAULT_OPTIONS
        items = list(items)
        if len(items) <= 1:
            return self._immediate("sort", items, opts)

        direction = "descending (best or highest first)" if descending else "ascending"
        instructions = [
            f"Criteria: {criteria}",
            f"Order: {direction}",
            "Return a JSON array containing every item id exactly once.",
        ]

        def _reorder(ids: list[int]) -> tuple[list[T], list[str]]:
            if sorted(ids) != list(range(len(items))):
                raise ValidationError(
                    f"expected a permutation of {len(items)} item ids, got {ids}"
                )
            return [items[i] for i in ids], []

        return await self._run(
            "sort",
            items,
            list[int],
            opts,
            prompt_input=number_items(items),
            instructions=instructions,
            postprocess=_reorder,
        )

    async def choose[T](
        self,
        items: Sequence[T],
        criteria: str,
        options: OperationOptions | None = None,
    ) -> OperationResult[T]:
        """The single item best satisfying ``criteria``."""
        opts = options or _DEFAULT_OPTIONS
        items = list(items)
        if not items:
            raise ChooseError(
                "no options to choose from",
                input=items,
                options=opts,
                request_id=opts.request_id or "",
            )
        if len(items) == 1:
            return self._immediate("choose", items[0], opts)

        instructions = [
            f"Criteria: {criteria}",
            "Return only the id of the chosen item as a JSON integer.",
        ]

        def _pick(item_id: int) -> tuple[T, list[str]]:
            (index,) = self._check_ids([item_id], len(items))
            return items[index], []

        return await self._run(
            "choose",
            items,
            int,
            opts,
            prompt_input=number_items(items),
            instructions=instructions,
            postprocess=_pick,
            error_kwargs={"choices": items},
        )

    async def score(
        self,
        input: Any,  # noqa: A002, ANN401
        criteria: str | Sequence[str],
        options: OperationOptions | None = None,
    ) -> OperationResult[float]:
        """A score in [0, 1]; out-of-range answers are clamped with a warning."""
        criteria_list = [criteria] if isinstance(criteria, str) else list(criteria)
        instructions = ["Criteria:", *(f"- {c}" for c in criteria_list if c)]
        instructions.append("Return only the score as a JSON number between 0.0 and 1.0.")

        def _clamp(value: float) -> tuple[float, list[str]]:
            if 0.0 <= value <= 1.0:
                return float(value), []
            clamped = min(1.0, max(0.0, value))
            log.warning("Score %s out of range; clamped to %s", value, clamped)
            return clamped, [f"score {value} out of range [0, 1]; clamped to {clamped}"]

        return await self._run(
            "score",
            input,
            float,
            options,
            instructions=instructions,
            postprocess=_clamp,
            require_input=True,
        )

    async def classify(
        self,
        input: Any,  # noqa: A002, ANN401
        labels: Sequence[str],
        options: OperationOptions | None = None,
        *,
        descriptions: Mapping[str, str] | None = None,
    ) -> OperationResult[str]:
        """Exactly one label from ``labels``; anything else is an error."""
        opts = options or _DEFAULT_OPTIONS
        labels = [label for label in labels if label and label.strip()]
        if not labels:
            raise ClassifyError(
                "labels cannot be empty",
                input=input,
                options=opts,
                request_id=opts.request_id or "",
            )

        instructions = ["Allowed labels:"]
        for label in labels:
            note = (descriptions or {}).get(label)
            instructions.append(f"- {label}: {note}" if note else f"- {label}")
        instructions.append("Return only the chosen label as a JSON string.")

        canonical = {label.strip().lower(): label for label in labels}

        def _match_label(raw: str) -> tuple[str, list[str]]:
            label = canonical.get(strip_quotes(raw).lower())
            if label is None:
                raise ValidationError(
                    f"label {raw!r} is not one of {sorted(canonical.values())}"
                )
            return label, []

        return await self._run(
            "classify",
            input,
            str,
            opts,
            instructions=instructions,
            postprocess=_match_label,
            require_input=True,
            error_kwargs={"labels": labels},
        )

    async def extract_batch[T](
        self,
        inputs: Sequence[Any],
        target: type[T],
        options: OperationOptions | None = None,
        *,
        max_concurrent: int = BATCH_MAX_CONCURRENT,
        timeout: float | None = None,
        hints: Mapping[str, str] | None = None,
        examples: Sequence[Any] = (),
    ) -> BatchResult[T]:
        """Extract a ``target`` value from each input, one call per item.

        At most ``max_concurrent`` extractions are in flight at once. A failing
        item is recorded in ``errors`` at its index and never aborts the others.
        ``timeout`` bounds the whole batch: items still queued or running when
        it passes fail with an ``ExtractError`` caused by cancellation.
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        opts = options or _DEFAULT_OPTIONS
        if timeout is not None:
            opts = opts.replace(cancel=(opts.cancel or CancelToken()).with_timeout(timeout))
        inputs = list(inputs)
        semaphore = asyncio.Semaphore(max_concurrent)

        async def _extract_one(
            index: int, item: Any  # noqa: ANN401
        ) -> tuple[OperationResult[T] | None, Exception | None]:
            item_opts = (
                opts
                if opts.request_id is None
                else opts.replace(request_id=f"{opts.request_id}-{index}")
            )
            async with semaphore:
                try:
                    result = await self.extract(
                        item, target, item_opts, hints=hints, examples=examples
                    )
                except OperationError as e:
                    log.debug("Batch item %d failed: %s", index, e)
                    return None, e
            return result, None

        started = time.perf_counter()
        outcomes = await asyncio.gather(
            *(_extract_one(i, item) for i, item in enumerate(inputs))
        )
        batch = BatchResult(
            results=tuple(result for result, _ in outcomes),
            errors=tuple(error for _, error in outcomes),
            duration=time.perf_counter() - started,
            max_concurrent=max_concurrent,
        )
        log.info(
            "Batch extract finished: %d/%d succeeded in %.2fs (cost $%.6f)",
            batch.succeeded,
            batch.total_items,
            batch.duration,
            batch.cost,
        )
        return batch

    # --- Core state machine ---

    async def _run(
        self,
        operation: str,
        input: Any,  # noqa: A002, ANN401
        target: Any,  # noqa: ANN401
        options: OperationOptions | None,
        *,
        prompt_input: Any = None,  # noqa: ANN401
        instructions: Sequence[str] = (),
        postprocess: PostProcess | None = None,
        check_fill: bool = False,
        require_input: bool = False,
        error_kwargs: Mapping[str, Any] | None = None,
        extra_warnings: Sequence[str] = (),
    ) -> OperationResult[Any]:
        opts = options or _DEFAULT_OPTIONS
        request_id = opts.request_id or uuid.uuid4().hex
        error_type = OPERATION_ERRORS[operation]
        try:
            if require_input and input is None:
                raise ValueError("input cannot be None")
            return await self._execute(
                operation,
                input,
                target,
                opts,
                request_id,
                prompt_input=input if prompt_input is None else prompt_input,
                instructions=instructions,
                postprocess=postprocess,
                check_fill=check_fill,
                extra_warnings=extra_warnings,
            )
        except OperationError:
            raise
        except Exception as e:
            error_class = classify_error(e)
            log.debug(
                "%s %s failed (%s): %s", operation, request_id, error_class, e
            )
            raise error_type(
                str(e),
                input=input,
                options=opts,
                request_id=request_id,
                confidence=getattr(e, "confidence", None),
                error_class=error_class,
                **dict(error_kwargs or {}),
            ) from e

    async def _execute(
        self,
        operation: str,
        input: Any,  # noqa: A002, ANN401
        target: Any,  # noqa: ANN401
        opts: OperationOptions,
        request_id: str,
        *,
        prompt_input: Any,  # noqa: ANN401
        instructions: Sequence[str],
        postprocess: PostProcess | None,
        check_fill: bool,
        extra_warnings: Sequence[str],
    ) -> OperationResult[Any]:
        # Step 1: validate, describe, compose
        descriptor = require_supported(target)
        findings = self.analyzer.analyze(descriptor)
        request = self._build_request(operation, input, target, descriptor, opts, request_id)
        prompt = self.composer.compose(
            operation,
            prompt_input,
            descriptor,
            request.steering,
            request.mode,
            instructions=instructions,
        )
        if self.config.debug:
            log.debug("System prompt:\n%s\nUser prompt:\n%s", prompt.system, prompt.user)

        model = get_model(
            request.intelligence,
            self.config.provider,
            self.config.tier_models,
            self.config.model,
        )
        invoke_options = InvokeOptions(
            model=model,
            max_tokens=get_max_tokens(request.intelligence),
            temperature=get_temperature(request.mode),
            provider=self.config.provider,
            request_id=request_id,
            timeout=request.timeout,
            response_schema=json_schema(target) if descriptor.is_structured else None,
        )
        cancel = (opts.cancel or CancelToken()).with_timeout(request.timeout)

        # Step 2: span + invocation with retry
        with self.tracer.start_span(
            f"schemaflow.{operation}",
            operation=operation,
            mode=str(request.mode),
            intelligence=str(request.intelligence),
            threshold=request.threshold,
            request_id=request_id,
            model=model,
            steering=request.steering[:MAX_SPAN_STEERING_CHARS],
        ) as span:
            attempts = 0

            def _on_attempt(number: int) -> None:
                nonlocal attempts
                attempts = number
                self.tracer.record_span_event(span, "attempt", number=number)

            started = time.perf_counter()
            raw: RawResponse = await self.retry.execute(
                lambda: self.invoker.invoke(prompt.system, prompt.user, invoke_options),
                max_attempts=request.max_attempts,
                base_backoff=self.config.retry_base_delay,
                cancel=cancel,
                context=f"{operation} (request {request_id})",
                on_attempt=_on_attempt,
            )
            latency = raw.latency or (time.perf_counter() - started)

            # Steps 3 and 4: parse, score and validate; record the spent tokens
            try:
                parsed = self.parser.parse(raw.text, target)
                self.tracer.record_span_event(
                    span, "parsed", path=parsed.path, confidence=parsed.confidence
                )
                self._check_thresholds(request, parsed, descriptor, check_fill=check_fill)
                value, post_warnings = (
                    postprocess(parsed.value) if postprocess else (parsed.value, [])
                )
            finally:
                cost = self._record_cost(request, raw, model)

            self.tracer.add_span_tags(
                span,
                confidence=parsed.confidence,
                cost=cost.total,
                total_tokens=raw.usage.total_tokens,
                attempts=attempts,
            )

        # Step 5: typed result
        warnings = (*extra_warnings, *findings, *parsed.warnings, *post_warnings)
        log.debug(
            "%s %s succeeded (confidence %.2f, cost $%.6f)",
            operation,
            request_id,
            parsed.confidence,
            cost.total,
        )
        return OperationResult(
            value=value,
            confidence=parsed.confidence,
            warnings=tuple(warnings),
            metadata=ResultMetadata(
                request_id=request_id,
                operation=operation,
                provider=self.config.provider,
                model=raw.model or model,
                usage=raw.usage,
                cost=cost,
                latency=latency,
                attempts=attempts,
                span_id=span.span_id,
            ),
        )

    # --- Helpers ---

    def _build_request(
        self,
        operation: str,
        input: Any,  # noqa: A002, ANN401
        target: Any,  # noqa: ANN401
        descriptor: TypeDescriptor,
        opts: OperationOptions,
        request_id: str,
    ) -> OperationRequest:
        return OperationRequest(
            operation=operation,
            input=input,
            target=target,
            descriptor=descriptor,
            mode=Mode(opts.mode or self.config.default_mode),
            intelligence=Intelligence(opts.intelligence or self.config.default_intelligence),
            request_id=request_id,
            steering=opts.steering,
            threshold=(
                self.config.confidence_threshold
                if opts.threshold is None
                else opts.threshold
            ),
            fill_threshold=opts.fill_threshold,
            max_attempts=(
                self.config.max_attempts
                if opts.max_attempts is None
                else opts.max_attempts
            ),
            timeout=self.config.timeout if opts.timeout is None else opts.timeout,
            tags=opts.tags,
        )

    def _check_thresholds(
        self,
        request: OperationRequest,
        parsed: ParsedResult[Any],
        descriptor: TypeDescriptor,
        *,
        check_fill: bool,
    ) -> None:
        if parsed.confidence < request.threshold:
            raise ValidationError(
                f"confidence {parsed.confidence:.2f} below threshold "
                f"{request.threshold:.2f}",
                confidence=parsed.confidence,
                threshold=request.threshold,
            )
        if not check_fill:
            return
        fill_threshold = request.fill_threshold
        if fill_threshold is None and request.mode is Mode.STRICT:
            fill_threshold = STRICT_FILL_THRESHOLD
        if fill_threshold is None:
            return
        result = validate_extracted_data(parsed.value, fill_threshold, descriptor)
        if not result.passed:
            raise ValidationError(
                result.summary,
                confidence=parsed.confidence,
                threshold=fill_threshold,
                fill_ratio=result.fill_ratio,
            )

    def _record_cost(self, request: OperationRequest, raw: RawResponse, model: str) -> CostInfo:
        cost = calculate_cost(raw.usage, raw.model or model, self.config.provider)
        if self.config.metrics:
            self.ledger.track_cost(
                cost,
                {
                    "operation": request.operation,
                    "request_id": request.request_id,
                    "tags": request.tags,
                },
                usage=raw.usage,
            )
        return cost

    @staticmethod
    def _check_ids(ids: Sequence[int], count: int) -> list[int]:
        unknown = [i for i in ids if not 0 <= i < count]
        if unknown:
            raise ValidationError(f"unknown item ids {unknown} (valid: 0..{count - 1})")
        return list(dict.fromkeys(ids))

    def _immediate(
        self, operation: str, value: Any, opts: OperationOptions  # noqa: ANN401
    ) -> OperationResult[Any]:
        """Result for inputs that need no model call (empty or single-item)."""
        request_id = opts.request_id or uuid.uuid4().hex
        log.debug("%s %s resolved without invocation", operation, request_id)
        return OperationResult(
            value=value,
            confidence=1.0,
            metadata=ResultMetadata(
                request_id=request_id,
                operation=operation,
                provider=self.config.provider,
            ),
        )


def create_dispatcher(
    invoker: LLMInvoker,
    config: FrozenConfig | ResolvedConfig | Mapping[str, Any] | None = None,
    **components: Any,
) -> OperationDispatcher:
    """Create a dispatcher, resolving configuration when none is given.

    ``config`` may be a frozen or resolved configuration, or a mapping of
    programmatic overrides. Remaining keyword arguments are passed to
    ``OperationDispatcher`` (ledger, tracer, retry, ...).
    """
    if config is None or isinstance(config, Mapping):
        final_config = resolve_config(dict(config or {})).to_frozen()
    elif isinstance(config, ResolvedConfig):
        final_config = config.to_frozen()
    else:
        final_config = config
    return OperationDispatcher(invoker, final_config, **components)
