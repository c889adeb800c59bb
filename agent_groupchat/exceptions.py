# Copyright (c) Microsoft. All rights reserved.

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Literal

logger = logging.getLogger("agent_groupchat")

__all__ = [
    "AgentException",
    "FatalAgentError",
    "GroupChatException",
    "GroupChatValidationError",
    "MiddlewareException",
    "ProviderError",
    "RateLimitExceededError",
    "RateLimitInfo",
    "SettingNotFoundError",
    "SpeakerResolutionError",
    "WorkflowExhaustionError",
]


class GroupChatException(Exception):
    """Base exception for group chat orchestration.

    Automatically logs the message as debug.
    """

    def __init__(
        self,
        message: str,
        inner_exception: Exception | None = None,
        log_level: Literal[0] | Literal[10] | Literal[20] | Literal[30] | Literal[40] | Literal[50] | None = 10,
        *args: Any,
        **kwargs: Any,
    ):
        """Create a GroupChatException.

        This emits a debug log (by default), with the inner_exception if provided.
        """
        if log_level is not None:
            logger.log(log_level, message, exc_info=inner_exception)
        self.inner_exception = inner_exception
        super().__init__(message, *args)  # type: ignore


class GroupChatValidationError(GroupChatException):
    """The group chat or its workflow was constructed with an invalid configuration."""

    pass


class WorkflowExhaustionError(GroupChatException):
    """The workflow has no transition available from the current speaker."""

    pass


class SpeakerResolutionError(GroupChatException):
    """The next speaker could not be resolved to a member of the group chat."""

    pass


class MiddlewareException(GroupChatException):
    """An error occurred during middleware execution."""

    pass


class SettingNotFoundError(GroupChatException):
    """A required setting could not be resolved from any source."""

    pass


# region Agent Exceptions


class AgentException(GroupChatException):
    """Base class for all errors raised while an agent generates a reply."""

    pass


class ProviderError(AgentException):
    """The model provider behind an agent failed to produce a reply.

    The raiser decides whether the failure is transient. Transient failures
    (throttling, timeouts) are retried by the orchestrator, others are not.
    """

    def __init__(
        self,
        message: str,
        inner_exception: Exception | None = None,
        *,
        transient: bool = False,
        retry_after: timedelta | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, inner_exception, **kwargs)
        self.transient = transient
        self.retry_after = retry_after


class FatalAgentError(AgentException):
    """A non-retryable failure of an agent."""

    pass


# region Rate limits


@dataclass(frozen=True)
class RateLimitInfo:
    """Rate limit state reported by a model provider."""

    timestamp: datetime | None = None
    limit_requests: int | None = None
    limit_tokens: int | None = None
    remaining_requests: int | None = None
    remaining_tokens: int | None = None
    reset_requests: timedelta | None = None
    reset_tokens: timedelta | None = None

    @property
    def is_exceeded(self) -> bool:
        """Whether either the request or the token budget is used up."""
        return (self.remaining_requests is not None and self.remaining_requests <= 0) or (
            self.remaining_tokens is not None and self.remaining_tokens <= 0
        )

    @property
    def time_until_reset(self) -> timedelta | None:
        """The longer of the two reset intervals, if any is known."""
        resets = [reset for reset in (self.reset_requests, self.reset_tokens) if reset is not None]
        return max(resets) if resets else None


def _format_rate_limit_message(info: RateLimitInfo) -> str:
    message = "Rate limit exceeded. "
    time_until_reset = info.time_until_reset
    if time_until_reset is None:
        return message + "See the info attribute for available details."
    message += f"Time until reset {time_until_reset}."
    if info.timestamp is not None:
        message += f" This should occur by {info.timestamp + time_until_reset}."
    return message


class RateLimitExceededError(ProviderError):
    """The provider throttled the request. Always transient."""

    def __init__(self, info: RateLimitInfo, inner_exception: Exception | None = None, **kwargs: Any):
        super().__init__(
            _format_rate_limit_message(info),
            inner_exception,
            transient=True,
            retry_after=info.time_until_reset,
            **kwargs,
        )
        self.info = info
