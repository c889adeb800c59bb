# Copyright (c) Microsoft. All rights reserved.

from collections.abc import Awaitable, Callable

import pytest

from agent_groupchat import (
    TERMINATE,
    AgentMiddleware,
    AgentMiddlewarePipeline,
    AgentRunContext,
    ChatMessage,
    GenerateReplyOptions,
    HumanInputMiddleware,
    HumanInputMode,
    MiddlewareAgent,
    MiddlewareException,
    Role,
    agent_middleware,
    with_middleware,
)


class RecordingMiddleware(AgentMiddleware):
    def __init__(self, label: str, order: list[str]) -> None:
        self.label = label
        self.order = order

    async def process(self, context: AgentRunContext, next: Callable[[AgentRunContext], Awaitable[None]]) -> None:
        self.order.append(f"{self.label}:before")
        await next(context)
        self.order.append(f"{self.label}:after")


class TestAgentRunContext:
    """Test cases for AgentRunContext."""

    def test_init_with_defaults(self, plain_agent) -> None:
        agent = plain_agent("a")
        messages = [ChatMessage(role=Role.USER, text="test")]
        context = AgentRunContext(agent=agent, messages=messages)

        assert context.agent is agent
        assert context.messages == messages
        assert context.messages is not messages
        assert context.options is None
        assert context.metadata == {}
        assert context.result is None
        assert context.terminate is False


class TestAgentMiddlewarePipeline:
    """Test cases for AgentMiddlewarePipeline."""

    async def test_execute_without_middleware(self, plain_agent) -> None:
        pipeline = AgentMiddlewarePipeline()
        context = AgentRunContext(agent=plain_agent("a"), messages=[])
        expected = ChatMessage(role=Role.ASSISTANT, text="direct")

        async def final_handler(ctx: AgentRunContext) -> ChatMessage:
            return expected

        assert not pipeline.has_middleware
        assert await pipeline.execute(context, final_handler) is expected

    async def test_order_is_outer_to_inner(self, plain_agent) -> None:
        order: list[str] = []
        pipeline = AgentMiddlewarePipeline([RecordingMiddleware("first", order), RecordingMiddleware("second", order)])

        async def final_handler(ctx: AgentRunContext) -> ChatMessage:
            order.append("agent")
            return ChatMessage(role=Role.ASSISTANT, text="done")

        result = await pipeline.execute(AgentRunContext(agent=plain_agent("a"), messages=[]), final_handler)

        assert result.text == "done"
        assert order == ["first:before", "second:before", "agent", "second:after", "first:after"]

    async def test_function_middleware(self, plain_agent) -> None:
        calls: list[str] = []

        @agent_middleware
        async def tagging(context: AgentRunContext, next: Callable[[AgentRunContext], Awaitable[None]]) -> None:
            calls.append("tagging")
            await next(context)

        pipeline = AgentMiddlewarePipeline(tagging)

        async def final_handler(ctx: AgentRunContext) -> ChatMessage:
            return ChatMessage(role=Role.ASSISTANT, text="ok")

        await pipeline.execute(AgentRunContext(agent=plain_agent("a"), messages=[]), final_handler)

        assert calls == ["tagging"]

    async def test_middleware_rewrites_messages_and_options(self, plain_agent) -> None:
        async def rewrite(context: AgentRunContext, next: Callable[[AgentRunContext], Awaitable[None]]) -> None:
            context.messages = [ChatMessage(role=Role.USER, text="rewritten")]
            context.options = GenerateReplyOptions(temperature=0)
            await next(context)

        seen: list[AgentRunContext] = []

        async def final_handler(ctx: AgentRunContext) -> ChatMessage:
            seen.append(ctx)
            return ChatMessage(role=Role.ASSISTANT, text="ok")

        await AgentMiddlewarePipeline([rewrite]).execute(
            AgentRunContext(agent=plain_agent("a"), messages=[ChatMessage(role=Role.USER, text="original")]),
            final_handler,
        )

        assert [m.text for m in seen[0].messages] == ["rewritten"]
        assert seen[0].options == GenerateReplyOptions(temperature=0)

    async def test_short_circuit_skips_agent(self, plain_agent) -> None:
        canned = ChatMessage(role=Role.ASSISTANT, text="canned")

        async def short_circuit(context: AgentRunContext, next: Callable[[AgentRunContext], Awaitable[None]]) -> None:
            context.result = canned

        async def final_handler(ctx: AgentRunContext) -> ChatMessage:
            raise AssertionError("agent must not be called")

        result = await AgentMiddlewarePipeline([short_circuit]).execute(
            AgentRunContext(agent=plain_agent("a"), messages=[]), final_handler
        )

        assert result is canned

    async def test_terminate_flag_skips_agent(self, plain_agent) -> None:
        canned = ChatMessage(role=Role.ASSISTANT, text="stopped")

        async def stop(context: AgentRunContext, next: Callable[[AgentRunContext], Awaitable[None]]) -> None:
            context.result = canned
            context.terminate = True
            await next(context)

        async def final_handler(ctx: AgentRunContext) -> ChatMessage:
            raise AssertionError("agent must not be called")

        result = await AgentMiddlewarePipeline([stop]).execute(
            AgentRunContext(agent=plain_agent("a"), messages=[]), final_handler
        )

        assert result is canned

    async def test_replace_result_after_next(self, plain_agent) -> None:
        async def shout(context: AgentRunContext, next: Callable[[AgentRunContext], Awaitable[None]]) -> None:
            await next(context)
            assert context.result is not None
            context.result = ChatMessage(role=Role.ASSISTANT, text=context.result.text.upper())

        async def final_handler(ctx: AgentRunContext) -> ChatMessage:
            return ChatMessage(role=Role.ASSISTANT, text="quiet")

        result = await AgentMiddlewarePipeline([shout]).execute(
            AgentRunContext(agent=plain_agent("a"), messages=[]), final_handler
        )

        assert result.text == "QUIET"

    async def test_no_result_raises(self, plain_agent) -> None:
        async def swallow(context: AgentRunContext, next: Callable[[AgentRunContext], Awaitable[None]]) -> None:
            return None

        async def final_handler(ctx: AgentRunContext) -> ChatMessage:
            return ChatMessage(role=Role.ASSISTANT, text="unused")

        with pytest.raises(MiddlewareException):
            await AgentMiddlewarePipeline([swallow]).execute(
                AgentRunContext(agent=plain_agent("a"), messages=[]), final_handler
            )

    def test_unsupported_middleware_type(self) -> None:
        with pytest.raises(MiddlewareException):
            AgentMiddlewarePipeline([42])  # type: ignore[list-item]

    def test_callable_without_next_parameter_is_rejected(self) -> None:
        async def only_context(context: AgentRunContext) -> None:
            pass

        with pytest.raises(MiddlewareException, match="only_context"):
            AgentMiddlewarePipeline([only_context])  # type: ignore[list-item]

    def test_marked_callable_skips_signature_check(self) -> None:
        @agent_middleware
        async def only_context(context: AgentRunContext) -> None:  # type: ignore[misc]
            pass

        assert AgentMiddlewarePipeline([only_context]).has_middleware

    async def test_callable_middleware_with_extra_positional_parameters(self, plain_agent) -> None:
        calls: list[str] = []

        class Counting:
            def __call__(self, context: AgentRunContext, next, *rest) -> Awaitable[None]:
                calls.append(context.agent.name)
                return next(context)

        async def final_handler(ctx: AgentRunContext) -> ChatMessage:
            return ChatMessage(role=Role.ASSISTANT, text="ok")

        result = await AgentMiddlewarePipeline([Counting()]).execute(
            AgentRunContext(agent=plain_agent("a"), messages=[]), final_handler
        )

        assert result.text == "ok"
        assert calls == ["a"]


class TestMiddlewareAgent:
    """Test cases for wrapping agents with middleware."""

    async def test_wrapper_keeps_name_and_delegates(self, plain_agent) -> None:
        order: list[str] = []
        inner = plain_agent("coder", reply="code")
        wrapped = MiddlewareAgent(inner, middleware=[RecordingMiddleware("log", order)])

        reply = await wrapped.generate_reply([ChatMessage(role=Role.USER, text="write")])

        assert wrapped.name == "coder"
        assert wrapped.inner_agent is inner
        assert reply.text == "code"
        assert order == ["log:before", "log:after"]
        assert [m.text for m in inner.received[0]] == ["write"]

    async def test_with_middleware_helper(self, plain_agent) -> None:
        order: list[str] = []
        wrapped = with_middleware(
            plain_agent("a"), RecordingMiddleware("outer", order), RecordingMiddleware("inner", order)
        )

        await wrapped.generate_reply([])

        assert order == ["outer:before", "inner:before", "inner:after", "outer:after"]

    async def test_agent_level_middleware(self, scripted_agent) -> None:
        order: list[str] = []
        agent = scripted_agent("a", "hello", middleware=RecordingMiddleware("own", order))

        reply = await agent.generate_reply([])

        assert reply.text == "hello"
        assert order == ["own:before", "own:after"]


class TestHumanInputMiddleware:
    """Test cases for HumanInputMiddleware."""

    async def test_never_mode_delegates(self, scripted_agent) -> None:
        agent = scripted_agent("user", "agent reply")
        middleware = HumanInputMiddleware(
            mode=HumanInputMode.NEVER, get_input=lambda: pytest.fail("must not prompt")
        )

        reply = await with_middleware(agent, middleware).generate_reply([ChatMessage(role=Role.USER, text="hi")])

        assert reply.text == "agent reply"

    async def test_always_mode_uses_input(self, scripted_agent) -> None:
        written: list[str] = []
        agent = scripted_agent("user")
        middleware = HumanInputMiddleware(
            mode=HumanInputMode.ALWAYS, get_input=lambda: "typed", write_line=written.append
        )

        reply = await with_middleware(agent, middleware).generate_reply(
            [ChatMessage(role=Role.ASSISTANT, text="question?", author_name="coder")]
        )

        assert reply.text == "typed"
        assert reply.author_name == "user"
        assert reply.role == Role.ASSISTANT
        assert written == ["coder: question?"]
        assert agent.calls == []

    async def test_exit_keyword_terminates(self, scripted_agent) -> None:
        middleware = HumanInputMiddleware(mode=HumanInputMode.ALWAYS, get_input=lambda: "exit", write_line=print)

        reply = await with_middleware(scripted_agent("user"), middleware).generate_reply(
            [ChatMessage(role=Role.USER, text="hi")]
        )

        assert reply.text == TERMINATE

    async def test_auto_mode_delegates_on_terminal_message(self, scripted_agent) -> None:
        agent = scripted_agent("user", "bye")
        middleware = HumanInputMiddleware(get_input=lambda: pytest.fail("must not prompt"))

        reply = await with_middleware(agent, middleware).generate_reply(
            [ChatMessage(role=Role.ASSISTANT, text=f"all done {TERMINATE}")]
        )

        assert reply.text == "bye"

    async def test_auto_mode_prompts_otherwise(self, scripted_agent) -> None:
        written: list[str] = []

        async def get_input() -> str:
            return "async typed"

        async def write_line(text: str) -> None:
            written.append(text)

        middleware = HumanInputMiddleware(prompt="Your turn", get_input=get_input, write_line=write_line)

        reply = await with_middleware(scripted_agent("user"), middleware).generate_reply([])

        assert reply.text == "async typed"
        assert written == ["Your turn"]

    async def test_custom_termination_check(self, scripted_agent) -> None:
        agent = scripted_agent("user", "from agent")
        middleware = HumanInputMiddleware(
            is_termination=lambda messages: True, get_input=lambda: pytest.fail("must not prompt")
        )

        reply = await with_middleware(agent, middleware).generate_reply([ChatMessage(role=Role.USER, text="x")])

        assert reply.text == "from agent"
