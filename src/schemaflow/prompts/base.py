from abc import ABC, abstractmethod  # noqa: D100
from collections.abc import Sequence
from typing import Any, NamedTuple

from schemaflow.analysis.type_descriptor import TypeDescriptor
from schemaflow.core.types import Mode


class PromptPair(NamedTuple):
    """System and user prompt for one invocation."""

    system: str
    user: str


class BasePromptBuilder(ABC):
    """Abstract base class for all prompt builders."""

    @abstractmethod
    def compose(
        self,
        verb: str,
        input: Any,  # noqa: A002, ANN401
        descriptor: TypeDescriptor,
        steering: str = "",
        mode: Mode = Mode.TRANSFORM,
        *,
        instructions: Sequence[str] = (),
    ) -> PromptPair:
        """Creates the prompt pair to be sent to the model."""
