# Copyright (c) Microsoft. All rights reserved.

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from ._logging import get_logger
from ._middleware import AgentMiddlewarePipeline, AgentMiddlewares, AgentRunContext
from ._types import ChatMessage, GenerateReplyOptions, Role

logger = get_logger("agent_groupchat")

__all__ = ["AgentProtocol", "BaseAgent", "DefaultReplyAgent"]


# region Agent Protocol


@runtime_checkable
class AgentProtocol(Protocol):
    """A named participant that can produce one reply from a conversation.

    Identity is by ``name``: a group chat never holds two agents with the same name.
    """

    @property
    def name(self) -> str:
        """Returns the name of the agent."""
        ...

    async def generate_reply(
        self,
        messages: Sequence[ChatMessage],
        options: GenerateReplyOptions | None = None,
    ) -> ChatMessage:
        """Generate one reply for the given conversation.

        Args:
            messages: The ordered conversation so far. Implementations must not mutate it.
            options: Optional generation options. Unset options defer to the agent's defaults.

        Returns:
            The reply message.

        Raises:
            ProviderError: The backing provider failed; ``transient`` tells whether a retry may help.
            FatalAgentError: The agent cannot reply and must not be retried.
        """
        ...


# region BaseAgent


class BaseAgent(ABC):
    """Base class for agents that carry their own middleware.

    Subclasses implement ``_generate_reply``; ``generate_reply`` runs the agent-level
    middleware, outermost first, around it.
    """

    def __init__(
        self,
        *,
        name: str,
        description: str | None = None,
        middleware: AgentMiddlewares | Sequence[AgentMiddlewares] | None = None,
        default_options: GenerateReplyOptions | None = None,
        **kwargs: Any,
    ) -> None:
        """Base class for all agents.

        Args:
            name: The name of the agent, used to identify it in a group chat.
            description: The description of the agent.
            middleware: Middleware wrapped around every reply, outermost first.
            default_options: Options applied when a call leaves them unset.
            kwargs: Additional properties set on the agent.
        """
        self._name = name
        self.description = description
        self.middleware: list[AgentMiddlewares] = (
            list(middleware) if isinstance(middleware, Sequence) else [middleware] if middleware else []
        )
        self.default_options = default_options
        self.additional_properties: dict[str, Any] = dict(kwargs)

    @property
    def name(self) -> str:
        return self._name

    def _resolve_options(self, options: GenerateReplyOptions | None) -> GenerateReplyOptions | None:
        if self.default_options is None:
            return options
        if options is None:
            return self.default_options
        return self.default_options & options

    async def generate_reply(
        self,
        messages: Sequence[ChatMessage],
        options: GenerateReplyOptions | None = None,
    ) -> ChatMessage:
        logger.debug(f"Agent '{self.name}' generating a reply to {len(messages)} message(s).")
        pipeline = AgentMiddlewarePipeline(self.middleware)
        context = AgentRunContext(agent=self, messages=messages, options=self._resolve_options(options))

        async def _execute_handler(ctx: AgentRunContext) -> ChatMessage:
            return await self._generate_reply(ctx.messages, ctx.options)

        return await pipeline.execute(context, _execute_handler)

    @abstractmethod
    async def _generate_reply(
        self,
        messages: Sequence[ChatMessage],
        options: GenerateReplyOptions | None,
    ) -> ChatMessage:
        """Produce the reply once middleware has run."""
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self._name!r})"


class DefaultReplyAgent(BaseAgent):
    """An agent that always answers with the same text.

    Useful as a stand-in user, or as a participant that ends the conversation by
    replying with ``TERMINATE``.
    """

    def __init__(self, name: str, default_reply: str, **kwargs: Any) -> None:
        super().__init__(name=name, **kwargs)
        self.default_reply = default_reply

    async def _generate_reply(
        self,
        messages: Sequence[ChatMessage],
        options: GenerateReplyOptions | None,
    ) -> ChatMessage:
        return ChatMessage(role=Role.ASSISTANT, text=self.default_reply, author_name=self.name)
