"""The LLM invocation capability consumed by the dispatcher.

Providers are plugged in by implementing ``LLMInvoker``; SchemaFlow itself
ships no network transport.
"""

from typing import Protocol, runtime_checkable

from schemaflow.core.types import InvokeOptions, RawResponse


@runtime_checkable
class LLMInvoker(Protocol):
    """Async boundary to a model provider.

    Implementations raise on failure; the message (or an ``error_class``
    attribute) drives retry classification.
    """

    name: str

    async def invoke(
        self, system_prompt: str, user_prompt: str, options: InvokeOptions
    ) -> RawResponse:
        """Send one prompt pair and return the raw model output."""
        ...
