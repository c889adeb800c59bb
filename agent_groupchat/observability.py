# Copyright (c) Microsoft. All rights reserved.

"""Tracing and observer hooks for group chat runs.

Spans are emitted through the globally configured OpenTelemetry tracer provider;
without one configured they are no-ops. Observers receive the same lifecycle
events in-process, which replaces printing from inside the orchestrator.
"""

import inspect
from collections.abc import Mapping, Sequence
from enum import Enum
from importlib.metadata import PackageNotFoundError, version
from typing import TYPE_CHECKING, Any

from opentelemetry import trace

from ._logging import get_logger

if TYPE_CHECKING:
    from opentelemetry.util._decorator import _AgnosticContextManager  # type: ignore[import-untyped]

    from ._agents import AgentProtocol
    from ._types import ChatMessage

__all__ = [
    "GroupChatObserver",
    "OtelAttr",
    "TerminationReason",
    "capture_exception",
    "create_group_chat_span",
    "get_tracer",
    "notify_observers",
]

try:
    version_info = version("agent-groupchat")
except PackageNotFoundError:
    version_info = "0.0.0"  # Fallback for development mode

logger = get_logger("agent_groupchat.observability")


class OtelAttr(str, Enum):
    """Span names and attributes emitted by the group chat orchestrator."""

    ERROR_TYPE = "error.type"
    RUN_SPAN = "group_chat.run"
    ROUND_SPAN = "group_chat.round"
    SELECT_SPEAKER_SPAN = "group_chat.select_speaker"
    MEMBERS = "group_chat.members"
    MAX_ROUND = "group_chat.max_round"
    ROUND_INDEX = "group_chat.round.index"
    SPEAKER = "group_chat.speaker"
    CANDIDATES = "group_chat.candidates"
    TERMINATION_REASON = "group_chat.termination_reason"
    MESSAGE_COUNT = "group_chat.message_count"

    def __str__(self) -> str:
        return self.value


class TerminationReason(str, Enum):
    """Why a group chat run stopped."""

    TERMINATE_MESSAGE = "terminate_message"
    NO_NEXT_SPEAKER = "no_next_speaker"
    WORKFLOW_EXHAUSTED = "workflow_exhausted"
    ERROR = "error"
    MAX_ROUND = "max_round"

    def __str__(self) -> str:
        return self.value


def get_tracer(
    instrumenting_module_name: str = "agent_groupchat",
    instrumenting_library_version: str = version_info,
) -> "trace.Tracer":
    """Returns a Tracer for the group chat orchestrator.

    This function is a convenience wrapper for trace.get_tracer(); the currently
    configured tracer provider is used.

    Examples:
        .. code-block:: python

            from agent_groupchat.observability import get_tracer

            tracer = get_tracer()
            with tracer.start_as_current_span("my_operation") as span:
                span.set_attribute("custom.attribute", "value")
    """
    return trace.get_tracer(
        instrumenting_module_name=instrumenting_module_name,
        instrumenting_library_version=instrumenting_library_version,
    )


def create_group_chat_span(
    name: str,
    attributes: Mapping[str, str | int | Sequence[str]] | None = None,
) -> "_AgnosticContextManager[trace.Span]":
    """Create a span for a stage of a group chat run."""
    return get_tracer().start_as_current_span(
        name,
        kind=trace.SpanKind.INTERNAL,
        attributes={str(key): value for key, value in (attributes or {}).items()},
    )


def capture_exception(span: trace.Span, exception: Exception) -> None:
    """Set an error for spans."""
    span.set_attribute(OtelAttr.ERROR_TYPE.value, type(exception).__name__)
    span.record_exception(exception=exception)
    span.set_status(status=trace.StatusCode.ERROR, description=repr(exception))


class GroupChatObserver:
    """Receives group chat lifecycle events.

    Override any of the hooks; each may be a plain or an ``async`` method. Observers
    must not mutate the messages they receive.
    """

    def on_round_start(self, round_index: int, speaker: "AgentProtocol") -> Any:
        """Called once the speaker of a round is known, before it replies."""
        return None

    def on_message(self, message: "ChatMessage") -> Any:
        """Called after a message is appended to the conversation."""
        return None

    def on_terminated(self, reason: TerminationReason, message: "ChatMessage | None") -> Any:
        """Called when the run stops, with the last message of the conversation."""
        return None


async def notify_observers(observers: Sequence[GroupChatObserver], hook: str, *args: Any) -> None:
    """Invoke ``hook`` on every observer in registration order.

    A failing observer is logged and skipped; it never interrupts the run or the
    observers registered after it.
    """
    for observer in observers:
        try:
            result = getattr(observer, hook)(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(f"Observer {type(observer).__name__}.{hook} failed.")
