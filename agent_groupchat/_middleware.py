# Copyright (c) Microsoft. All rights reserved.

import inspect
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeAlias

from ._logging import get_logger
from ._types import TERMINATE, ChatMessage, GenerateReplyOptions, Role, is_terminate_message
from .exceptions import MiddlewareException

if TYPE_CHECKING:
    from ._agents import AgentProtocol


__all__ = [
    "AgentMiddleware",
    "AgentMiddlewarePipeline",
    "AgentMiddlewares",
    "AgentRunContext",
    "HumanInputMiddleware",
    "HumanInputMode",
    "MiddlewareAgent",
    "agent_middleware",
    "with_middleware",
]

logger = get_logger("agent_groupchat.middleware")


class AgentRunContext:
    """State shared by the middleware of one ``generate_reply`` call.

    Every link of the pipeline receives the same instance; it carries the inputs of the call
    and, once the agent has run, its reply.

    Attributes:
        agent: The agent being invoked.
        messages: The conversation sent to the agent. Middleware may replace it before calling ``next``.
        options: The generation options. Middleware may replace them before calling ``next``.
        metadata: Metadata dictionary for sharing data between agent middleware.
        result: The reply. Can be observed after calling ``next()`` or set to override
                (or short-circuit) the agent.
        terminate: A flag indicating whether to skip the agent once control returns to the pipeline.

    Examples:
        .. code-block:: python

            from agent_groupchat import AgentMiddleware, AgentRunContext


            class AuditMiddleware(AgentMiddleware):
                async def process(self, context: AgentRunContext, next):
                    audit_log.append(("request", context.agent.name, len(context.messages)))

                    # run the rest of the chain
                    await next(context)

                    # the reply is available once next returns
                    audit_log.append(("reply", context.agent.name, context.result))
    """

    def __init__(
        self,
        agent: "AgentProtocol",
        messages: Sequence[ChatMessage],
        options: GenerateReplyOptions | None = None,
        metadata: dict[str, Any] | None = None,
        result: ChatMessage | None = None,
        terminate: bool = False,
    ) -> None:
        self.agent = agent
        self.messages = list(messages)
        self.options = options
        self.metadata = metadata if metadata is not None else {}
        self.result = result
        self.terminate = terminate


class AgentMiddleware(ABC):
    """Abstract base class for agent middleware that can intercept reply generation.

    A middleware sees the call before the agent and the reply after it. It may
    rewrite either of them, or answer on the agent's behalf without calling it.

    Examples:
        .. code-block:: python

            from agent_groupchat import AgentMiddleware, AgentRunContext, ChatMessage


            class CannedReplyMiddleware(AgentMiddleware):
                async def process(self, context: AgentRunContext, next):
                    if context.messages and "ping" in context.messages[-1].text:
                        context.result = ChatMessage(role="assistant", text="pong", author_name=context.agent.name)
                        return
                    await next(context)
    """

    @abstractmethod
    async def process(
        self,
        context: AgentRunContext,
        next: Callable[[AgentRunContext], Awaitable[None]],
    ) -> None:
        """Process an agent invocation.

        Args:
            context: Agent invocation context containing agent, messages, options and metadata.
            next: Function to call the next middleware or the agent itself.
                  Does not return anything - all data flows through the context.
        """
        ...


AgentMiddlewareCallable = Callable[[AgentRunContext, Callable[[AgentRunContext], Awaitable[None]]], Awaitable[None]]
AgentMiddlewares: TypeAlias = AgentMiddleware | AgentMiddlewareCallable


def agent_middleware(func: AgentMiddlewareCallable) -> AgentMiddlewareCallable:
    """Mark a plain async function as agent middleware.

    Marked functions are registered without inspecting their signature; unmarked
    callables must accept (context, next).

    Examples:
        .. code-block:: python

            from agent_groupchat import agent_middleware, AgentRunContext


            @agent_middleware
            async def logging_middleware(context: AgentRunContext, next):
                print(f"Before: {context.agent.name}")
                await next(context)
                print(f"After: {context.result}")
    """
    func._is_agent_middleware = True  # type: ignore[attr-defined]
    return func


def _takes_context_and_next(func: Callable[..., Any]) -> bool:
    try:
        params = list(inspect.signature(func).parameters.values())
    except (TypeError, ValueError):
        return False
    if any(param.kind == inspect.Parameter.VAR_POSITIONAL for param in params):
        return True
    positional = [
        param
        for param in params
        if param.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
    ]
    return len(positional) >= 2


class MiddlewareWrapper:
    """Wraps a plain middleware function so it can sit in a pipeline next to class-based middleware."""

    def __init__(self, func: AgentMiddlewareCallable) -> None:
        self.func = func

    async def process(self, context: AgentRunContext, next: Callable[[AgentRunContext], Awaitable[None]]) -> None:
        await self.func(context, next)


class AgentMiddlewarePipeline:
    """Runs a list of agent middleware around a final handler.

    The first registered middleware is the outermost one: it sees the call first
    and the reply last.
    """

    def __init__(self, middleware: AgentMiddlewares | Sequence[AgentMiddlewares] | None = None):
        self._middleware: list[AgentMiddleware | MiddlewareWrapper] = []
        if middleware is None:
            return
        if isinstance(middleware, AgentMiddleware) or callable(middleware):
            middleware = [middleware]  # type: ignore[list-item]
        for item in middleware:  # type: ignore[union-attr]
            self._register_middleware(item)

    def _register_middleware(self, middleware: AgentMiddlewares) -> None:
        if isinstance(middleware, AgentMiddleware):
            self._middleware.append(middleware)
        elif callable(middleware):
            # the decorator vouches for the function, otherwise the signature must fit
            if not getattr(middleware, "_is_agent_middleware", False) and not _takes_context_and_next(middleware):
                name = getattr(middleware, "__name__", type(middleware).__name__)
                raise MiddlewareException(
                    f"Middleware function must have at least 2 parameters (context, next), "
                    f"or be marked with @agent_middleware: {name}"
                )
            self._middleware.append(MiddlewareWrapper(middleware))
        else:
            raise MiddlewareException(f"Unsupported middleware type: {type(middleware).__name__}")

    @property
    def has_middleware(self) -> bool:
        """Check if there is any middleware registered."""
        return bool(self._middleware)

    def _create_handler_chain(
        self,
        final_handler: Callable[[AgentRunContext], Awaitable[ChatMessage]],
    ) -> Callable[[AgentRunContext], Awaitable[None]]:
        def create_next_handler(index: int) -> Callable[[AgentRunContext], Awaitable[None]]:
            if index >= len(self._middleware):

                async def final_wrapper(c: AgentRunContext) -> None:
                    # A middleware that asked to terminate keeps whatever result it set
                    if c.terminate:
                        return
                    c.result = await final_handler(c)

                return final_wrapper

            middleware = self._middleware[index]
            next_handler = create_next_handler(index + 1)

            async def current_handler(c: AgentRunContext) -> None:
                await middleware.process(c, next_handler)

            return current_handler

        return create_next_handler(0)

    async def execute(
        self,
        context: AgentRunContext,
        final_handler: Callable[[AgentRunContext], Awaitable[ChatMessage]],
    ) -> ChatMessage:
        """Run the chain and return the reply it settled on.

        Raises:
            MiddlewareException: If the chain finished without producing a reply.
        """
        if not self._middleware:
            return await final_handler(context)

        await self._create_handler_chain(final_handler)(context)
        if context.result is None:
            raise MiddlewareException(
                f"Middleware pipeline for agent '{context.agent.name}' completed without producing a reply."
            )
        return context.result


class MiddlewareAgent:
    """Wraps any agent with a middleware pipeline without the agent's knowledge.

    The wrapper re-exposes the agent contract under the inner agent's name, so it can
    stand in for the agent anywhere, including as a group chat member.

    Examples:
        .. code-block:: python

            from agent_groupchat import MiddlewareAgent

            agent = MiddlewareAgent(coder, middleware=[logging_middleware, HumanInputMiddleware()])
            reply = await agent.generate_reply(messages)
    """

    def __init__(
        self,
        agent: "AgentProtocol",
        middleware: AgentMiddlewares | Sequence[AgentMiddlewares] | None = None,
    ) -> None:
        self._agent = agent
        self._pipeline = AgentMiddlewarePipeline(middleware)

    @property
    def name(self) -> str:
        return self._agent.name

    @property
    def inner_agent(self) -> "AgentProtocol":
        """The wrapped agent."""
        return self._agent

    async def generate_reply(
        self,
        messages: Sequence[ChatMessage],
        options: GenerateReplyOptions | None = None,
    ) -> ChatMessage:
        context = AgentRunContext(agent=self, messages=messages, options=options)

        async def _execute_handler(ctx: AgentRunContext) -> ChatMessage:
            return await self._agent.generate_reply(ctx.messages, ctx.options)

        return await self._pipeline.execute(context, _execute_handler)

    def __repr__(self) -> str:
        return f"MiddlewareAgent(agent={self._agent!r})"


def with_middleware(agent: "AgentProtocol", *middleware: AgentMiddlewares) -> MiddlewareAgent:
    """Wrap ``agent`` with ``middleware``, listed outermost first."""
    return MiddlewareAgent(agent, list(middleware))


# region Human input


class HumanInputMode(str, Enum):
    """When the human input middleware asks a person for the reply."""

    NEVER = "never"
    ALWAYS = "always"
    AUTO = "auto"


def _default_get_input() -> str:
    return input()


def _default_write_line(message: str) -> None:
    print(message)


async def _default_is_termination(messages: Sequence[ChatMessage]) -> bool:
    return bool(messages) and is_terminate_message(messages[-1])


class HumanInputMiddleware(AgentMiddleware):
    """Lets a person answer on behalf of the agent.

    In ``NEVER`` mode, or in ``AUTO`` mode once the conversation is already terminating,
    the agent replies as usual. Otherwise the last message is shown and the typed input
    becomes the reply; typing the exit keyword ends the conversation.

    ``get_input`` and ``write_line`` may be sync or async callables.
    """

    def __init__(
        self,
        prompt: str = "Please give feedback: Press enter or type 'exit' to stop the conversation.",
        exit_keyword: str = "exit",
        mode: HumanInputMode = HumanInputMode.AUTO,
        is_termination: Callable[[Sequence[ChatMessage]], Awaitable[bool] | bool] | None = None,
        get_input: Callable[[], Awaitable[str] | str] | None = None,
        write_line: Callable[[str], Awaitable[None] | None] | None = None,
    ) -> None:
        self.prompt = prompt
        self.exit_keyword = exit_keyword
        self.mode = HumanInputMode(mode)
        self._is_termination = is_termination or _default_is_termination
        self._get_input = get_input or _default_get_input
        self._write_line = write_line or _default_write_line

    async def _is_terminating(self, messages: Sequence[ChatMessage]) -> bool:
        result = self._is_termination(messages)
        if inspect.isawaitable(result):
            result = await result
        return bool(result)

    async def process(
        self,
        context: AgentRunContext,
        next: Callable[[AgentRunContext], Awaitable[None]],
    ) -> None:
        if self.mode == HumanInputMode.NEVER or (
            self.mode == HumanInputMode.AUTO and await self._is_terminating(context.messages)
        ):
            await next(context)
            return

        shown = str(context.messages[-1]) if context.messages else self.prompt
        written = self._write_line(shown)
        if inspect.isawaitable(written):
            await written

        text = self._get_input()
        if inspect.isawaitable(text):
            text = await text

        if text == self.exit_keyword:
            logger.info(f"Human input ended the conversation for agent '{context.agent.name}'.")
            text = TERMINATE
        context.result = ChatMessage(role=Role.ASSISTANT, text=text, author_name=context.agent.name)
