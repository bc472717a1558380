"""Runtime type-based dispatch for callers (Match/Case).

Matching is by exact type identity: ``case(42, ...)`` matches ``int`` but
not ``bool``. Only an open shape used as the exemplar, meaning a
``typing.Protocol`` (runtime checkable) or an abstract base class, matches
structurally through ``isinstance``.

Example:
    match(
        error,
        case(ParseError, lambda: retry_with_stricter_prompt()),
        case(ValidationError, lambda: ask_user()),
        otherwise(lambda: log.error("unexpected: %s", error)),
    )
"""

from abc import ABC
from collections.abc import Callable
import dataclasses
import inspect
import logging
from typing import Any

log = logging.getLogger(__name__)

type Action = Callable[[], object]


class _Otherwise:
    __slots__ = ()

    def __repr__(self) -> str:
        return "OTHERWISE"


OTHERWISE: Any = _Otherwise()


@dataclasses.dataclass(frozen=True, slots=True)
class Case:
    """An exemplar (a type or a value of the type) paired with an action.

    A case without an action is a no-op: it never fires and never stops
    later cases from being evaluated.
    """

    exemplar: Any
    action: Action | None = None

    def matches(self, subject: Any) -> bool:  # noqa: ANN401
        exemplar = self.exemplar
        if exemplar is OTHERWISE:
            return True
        if isinstance(exemplar, type):
            if _is_open_shape(exemplar):
                return isinstance(subject, exemplar)
            return type(subject) is exemplar
        return type(subject) is type(exemplar)


def _is_open_shape(tp: type) -> bool:
    if getattr(tp, "_is_protocol", False):
        return getattr(tp, "_is_runtime_protocol", False)
    return inspect.isabstract(tp) or ABC in tp.__bases__


def case(exemplar: Any, action: Action | None = None) -> Case:  # noqa: ANN401
    return Case(exemplar, action)


def otherwise(action: Action | None) -> Case:
    """A case that fires when no earlier case did."""
    return Case(OTHERWISE, action)


def match(subject: Any, *cases: Case) -> bool:  # noqa: ANN401
    """Fire the first matching case's action, in declaration order.

    Returns whether an action fired. No match fires nothing and raises
    nothing.
    """
    for candidate in cases:
        if candidate.action is None:
            continue
        if candidate.matches(subject):
            log.debug("Matched %r against %r", type(subject).__name__, candidate.exemplar)
            candidate.action()
            return True
    return False
