"""Deterministic invoker used for tests and examples (no network)."""

from collections import deque
from collections.abc import Callable, Iterable
import dataclasses
from typing import Any

from schemaflow.core.types import InvokeOptions, RawResponse, TokenUsage

type ScriptStep = (
    str
    | RawResponse
    | BaseException
    | Callable[[str, str, InvokeOptions], str | RawResponse]
)


@dataclasses.dataclass(frozen=True, slots=True)
class InvocationRecord:
    """One call seen by a ScriptedInvoker."""

    system_prompt: str
    user_prompt: str
    options: InvokeOptions


class ScriptedInvoker:
    """Replays scripted responses in order.

    Each step is a response text, a full ``RawResponse``, an exception to
    raise, or a callable receiving the prompts. Once the script is exhausted
    the last step repeats. Plain texts get a token estimate of one token per
    four characters so cost accounting has something to work with.
    """

    def __init__(
        self, steps: Iterable[ScriptStep] = (), *, name: str = "mock", model: str = ""
    ) -> None:
        self.name = name
        self.model = model
        self._steps: deque[ScriptStep] = deque(steps)
        self._last: ScriptStep | None = None
        self.calls: list[InvocationRecord] = []

    def push(self, *steps: ScriptStep) -> None:
        self._steps.extend(steps)

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def invoke(
        self, system_prompt: str, user_prompt: str, options: InvokeOptions
    ) -> RawResponse:
        self.calls.append(InvocationRecord(system_prompt, user_prompt, options))
        if self._steps:
            self._last = self._steps.popleft()
        step = self._last
        if step is None:
            raise RuntimeError("ScriptedInvoker has no scripted responses")

        if isinstance(step, BaseException):
            raise step
        if callable(step):
            step = step(system_prompt, user_prompt, options)
        if isinstance(step, RawResponse):
            return step
        return RawResponse(
            text=step,
            usage=_estimate_usage(system_prompt + user_prompt, step),
            model=self.model or options.model,
        )


def _estimate_usage(prompt: str, completion: Any) -> TokenUsage:  # noqa: ANN401
    return TokenUsage(
        prompt_tokens=max(1, len(prompt) // 4),
        completion_tokens=max(1, len(str(completion)) // 4),
    )
