# Copyright (c) Microsoft. All rights reserved.

import inspect
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import TypeAlias

from ._agents import AgentProtocol
from ._logging import get_logger
from ._types import ChatMessage

__all__ = ["Transition", "TransitionPredicate", "Workflow", "message_contains"]

logger = get_logger("agent_groupchat.workflow")

TransitionPredicate: TypeAlias = Callable[
    [AgentProtocol, AgentProtocol, Sequence[ChatMessage]],
    Awaitable[bool] | bool,
]


def _extract_function_name(func: Callable[..., object]) -> str:
    """Map a predicate to a concise identifier for logs and reprs."""
    name = getattr(func, "__name__", None)
    if name is None:
        inner = getattr(func, "func", None)  # functools.partial
        name = getattr(inner, "__name__", None)
    return name or "<callable>"


class Transition:
    """A directed, predicate-guarded edge between two agents.

    The predicate receives ``(from_agent, to_agent, messages)`` and returns a bool,
    either directly or as an awaitable. It must be free of side effects: it may be
    evaluated several times for the same conversation. When omitted, the transition
    is always available.

    Examples:
        .. code-block:: python

            from agent_groupchat import Transition, message_contains

            review = Transition(coder, reviewer)
            approve = Transition(reviewer, runner, message_contains("APPROVED"))
    """

    def __init__(
        self,
        from_agent: AgentProtocol,
        to_agent: AgentProtocol,
        can_transition: TransitionPredicate | None = None,
    ) -> None:
        self.from_agent = from_agent
        self.to_agent = to_agent
        self._can_transition = can_transition
        self.condition_name = _extract_function_name(can_transition) if can_transition is not None else None

    @property
    def id(self) -> str:
        """A stable identifier of the form ``from->to``."""
        return f"{self.from_agent.name}->{self.to_agent.name}"

    async def can_transit(self, messages: Sequence[ChatMessage]) -> bool:
        """Evaluate the predicate against the conversation so far."""
        if self._can_transition is None:
            return True
        result = self._can_transition(self.from_agent, self.to_agent, messages)
        if inspect.isawaitable(result):
            result = await result
        return bool(result)

    def __repr__(self) -> str:
        condition = f", condition={self.condition_name}" if self.condition_name else ""
        return f"Transition({self.id}{condition})"


class Workflow:
    """The set of transitions constraining which agent may speak after which.

    Transitions are kept in declaration order, which is also the order their
    predicates are evaluated in.
    """

    def __init__(self, transitions: Iterable[Transition] | None = None) -> None:
        self._transitions: list[Transition] = list(transitions or [])

    @property
    def transitions(self) -> list[Transition]:
        """A copy of the transitions, in declaration order."""
        return list(self._transitions)

    @property
    def agent_names(self) -> list[str]:
        """Every agent name used as a transition endpoint, without duplicates."""
        names: dict[str, None] = {}
        for transition in self._transitions:
            names.setdefault(transition.from_agent.name, None)
            names.setdefault(transition.to_agent.name, None)
        return list(names)

    def add_transition(self, transition: Transition) -> "Workflow":
        """Append a transition and return the workflow for chaining."""
        self._transitions.append(transition)
        return self

    def copy(self) -> "Workflow":
        """A workflow with copies of these transitions, unaffected by later changes to this one."""
        return Workflow(
            Transition(transition.from_agent, transition.to_agent, transition._can_transition)
            for transition in self._transitions
        )

    async def candidates(
        self,
        from_agent: AgentProtocol,
        messages: Sequence[ChatMessage],
    ) -> list[AgentProtocol]:
        """Return the agents that may speak after ``from_agent``.

        Predicates are awaited one at a time in declaration order, so a failing
        predicate is always attributed to the same transition. The result is
        deduplicated by agent name, keeping first occurrences.
        """
        available: dict[str, AgentProtocol] = {}
        for transition in self._transitions:
            if transition.from_agent.name != from_agent.name:
                continue
            if await transition.can_transit(messages):
                available.setdefault(transition.to_agent.name, transition.to_agent)
            else:
                logger.debug(f"Transition {transition.id} is not available.")
        return list(available.values())

    def __len__(self) -> int:
        return len(self._transitions)

    def __repr__(self) -> str:
        return f"Workflow({self._transitions!r})"


def message_contains(marker: str, *, case_sensitive: bool = True) -> TransitionPredicate:
    """Build a predicate that is true when the last message contains ``marker``.

    Examples:
        .. code-block:: python

            workflow = Workflow([
                Transition(reviewer, coder, message_contains("REJECTED")),
                Transition(reviewer, runner, message_contains("APPROVED")),
            ])
    """

    def _message_contains(
        from_agent: AgentProtocol, to_agent: AgentProtocol, messages: Sequence[ChatMessage]
    ) -> bool:
        if not messages:
            return False
        text = messages[-1].text
        if case_sensitive:
            return marker in text
        return marker.lower() in text.lower()

    _message_contains.__name__ = f"message_contains({marker!r})"
    return _message_contains
