# Copyright (c) Microsoft. All rights reserved.

import logging
from datetime import datetime, timedelta

import pytest

from agent_groupchat import (
    AgentException,
    FatalAgentError,
    GroupChatException,
    GroupChatValidationError,
    ProviderError,
    RateLimitExceededError,
    RateLimitInfo,
    SpeakerResolutionError,
    WorkflowExhaustionError,
    get_logger,
    setup_logging,
)


def test_hierarchy() -> None:
    assert issubclass(GroupChatValidationError, GroupChatException)
    assert issubclass(WorkflowExhaustionError, GroupChatException)
    assert issubclass(SpeakerResolutionError, GroupChatException)
    assert issubclass(ProviderError, AgentException)
    assert issubclass(FatalAgentError, AgentException)
    assert issubclass(RateLimitExceededError, ProviderError)


def test_exception_logs_on_creation(caplog: pytest.LogCaptureFixture) -> None:
    inner = ValueError("root cause")

    with caplog.at_level(logging.DEBUG, logger="agent_groupchat"):
        error = GroupChatException("something broke", inner)

    assert error.inner_exception is inner
    assert str(error) == "something broke"
    assert any(record.message == "something broke" for record in caplog.records)


def test_exception_log_level_can_be_disabled(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.DEBUG, logger="agent_groupchat"):
        GroupChatException("quiet", log_level=None)

    assert not caplog.records


def test_provider_error_defaults() -> None:
    error = ProviderError("bad request")

    assert error.transient is False
    assert error.retry_after is None


def test_rate_limit_info() -> None:
    info = RateLimitInfo(
        timestamp=datetime(2024, 1, 1, 12, 0, 0),
        remaining_requests=0,
        remaining_tokens=100,
        reset_requests=timedelta(seconds=2),
        reset_tokens=timedelta(seconds=30),
    )

    assert info.is_exceeded
    assert info.time_until_reset == timedelta(seconds=30)
    assert not RateLimitInfo(remaining_requests=5).is_exceeded
    assert RateLimitInfo().time_until_reset is None


def test_rate_limit_error() -> None:
    info = RateLimitInfo(timestamp=datetime(2024, 1, 1, 12, 0, 0), reset_tokens=timedelta(seconds=30))

    error = RateLimitExceededError(info)

    assert error.transient is True
    assert error.retry_after == timedelta(seconds=30)
    assert error.info is info
    assert "0:00:30" in str(error)
    assert "2024-01-01 12:00:30" in str(error)


def test_rate_limit_error_without_reset() -> None:
    error = RateLimitExceededError(RateLimitInfo(remaining_tokens=0))

    assert error.retry_after is None
    assert "See the info attribute" in str(error)


def test_get_logger_enforces_namespace() -> None:
    assert get_logger().name == "agent_groupchat"
    assert get_logger("agent_groupchat.custom").name == "agent_groupchat.custom"
    with pytest.raises(GroupChatException):
        get_logger("other")


def test_setup_logging_sets_level() -> None:
    logger = logging.getLogger("agent_groupchat")
    previous = logger.level
    try:
        setup_logging(logging.WARNING)
        assert logger.level == logging.WARNING
    finally:
        logger.setLevel(previous)
