# Copyright (c) Microsoft. All rights reserved.

"""Multi-agent group chat orchestration.

This package runs a conversation among several agents:
- GroupChat: selects the next speaker each round, from a transition graph and,
  when the graph leaves a choice, an admin agent's role-play arbitration
- Workflow / Transition: predicate-guarded edges between agents
- RoundRobinGroupChat / send: fixed-order conversations
- AgentMiddleware / MiddlewareAgent: interception around any agent's reply
"""

import importlib.metadata

try:
    __version__ = importlib.metadata.version("agent-groupchat")
except importlib.metadata.PackageNotFoundError:
    __version__ = "0.0.0"  # Fallback for development mode

from ._agents import AgentProtocol, BaseAgent, DefaultReplyAgent
from ._group_chat import GroupChat, RoundRobinGroupChat, run, run_sync, send
from ._logging import get_logger, setup_logging
from ._middleware import (
    AgentMiddleware,
    AgentMiddlewarePipeline,
    AgentMiddlewares,
    AgentRunContext,
    HumanInputMiddleware,
    HumanInputMode,
    MiddlewareAgent,
    agent_middleware,
    with_middleware,
)
from ._settings import GROUP_CHAT_DEFAULTS, GroupChatSettings, load_settings
from ._types import (
    CLEAR_MESSAGES,
    TERMINATE,
    ChatMessage,
    Contents,
    DataContent,
    FunctionCallContent,
    FunctionContract,
    FunctionResultContent,
    GenerateReplyOptions,
    MessageKind,
    Role,
    TextContent,
    UriContent,
    is_clear_message,
    is_terminate_message,
)
from ._workflow import Transition, TransitionPredicate, Workflow, message_contains
from .exceptions import (
    AgentException,
    FatalAgentError,
    GroupChatException,
    GroupChatValidationError,
    MiddlewareException,
    ProviderError,
    RateLimitExceededError,
    RateLimitInfo,
    SettingNotFoundError,
    SpeakerResolutionError,
    WorkflowExhaustionError,
)
from .observability import GroupChatObserver, TerminationReason

__all__ = [
    "CLEAR_MESSAGES",
    "GROUP_CHAT_DEFAULTS",
    "TERMINATE",
    "AgentException",
    "AgentMiddleware",
    "AgentMiddlewarePipeline",
    "AgentMiddlewares",
    "AgentProtocol",
    "AgentRunContext",
    "BaseAgent",
    "ChatMessage",
    "Contents",
    "DataContent",
    "DefaultReplyAgent",
    "FatalAgentError",
    "FunctionCallContent",
    "FunctionContract",
    "FunctionResultContent",
    "GenerateReplyOptions",
    "GroupChat",
    "GroupChatException",
    "GroupChatObserver",
    "GroupChatSettings",
    "GroupChatValidationError",
    "HumanInputMiddleware",
    "HumanInputMode",
    "MessageKind",
    "MiddlewareAgent",
    "MiddlewareException",
    "ProviderError",
    "RateLimitExceededError",
    "RateLimitInfo",
    "Role",
    "RoundRobinGroupChat",
    "SettingNotFoundError",
    "SpeakerResolutionError",
    "TerminationReason",
    "TextContent",
    "Transition",
    "TransitionPredicate",
    "UriContent",
    "Workflow",
    "WorkflowExhaustionError",
    "__version__",
    "agent_middleware",
    "get_logger",
    "is_clear_message",
    "is_terminate_message",
    "load_settings",
    "message_contains",
    "run",
    "run_sync",
    "send",
    "setup_logging",
    "with_middleware",
]
