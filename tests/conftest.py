# Copyright (c) Microsoft. All rights reserved.

import os
from collections.abc import Generator, Sequence
from pathlib import Path
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from pytest import MonkeyPatch, fixture

from agent_groupchat import BaseAgent, ChatMessage, GenerateReplyOptions, Role


class ScriptedAgent(BaseAgent):
    """Replies with a fixed script and records every call.

    Script entries are strings, messages or exceptions (raised). The last entry
    repeats once the script runs out.
    """

    def __init__(self, name: str, *script: str | ChatMessage | BaseException, **kwargs: Any) -> None:
        super().__init__(name=name, **kwargs)
        self.script = list(script) or [f"reply from {name}"]
        self.calls: list[tuple[list[ChatMessage], GenerateReplyOptions | None]] = []

    async def _generate_reply(
        self,
        messages: Sequence[ChatMessage],
        options: GenerateReplyOptions | None,
    ) -> ChatMessage:
        self.calls.append((list(messages), options))
        entry = self.script[min(len(self.calls), len(self.script)) - 1]
        if isinstance(entry, BaseException):
            raise entry
        if isinstance(entry, ChatMessage):
            return entry
        return ChatMessage(role=Role.ASSISTANT, text=entry, author_name=self.name)


class PlainAgent:
    """A minimal agent that satisfies the protocol without inheriting from BaseAgent."""

    def __init__(self, name: str, reply: str = "ok") -> None:
        self._name = name
        self.reply = reply
        self.received: list[list[ChatMessage]] = []

    @property
    def name(self) -> str:
        return self._name

    async def generate_reply(
        self,
        messages: Sequence[ChatMessage],
        options: GenerateReplyOptions | None = None,
    ) -> ChatMessage:
        self.received.append(list(messages))
        return ChatMessage(role=Role.ASSISTANT, text=self.reply, author_name=self._name)


@fixture
def scripted_agent() -> type[ScriptedAgent]:
    """Factory for agents with a fixed reply script."""
    return ScriptedAgent


@fixture
def plain_agent() -> type[PlainAgent]:
    """Factory for protocol-only agents."""
    return PlainAgent


@fixture(autouse=True)
def clean_group_chat_env(monkeypatch: MonkeyPatch, tmp_path: Path) -> None:
    """Keep GROUPCHAT_* variables and a stray .env file out of the tests."""
    for key in list(os.environ):
        if key.startswith("GROUPCHAT_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


@fixture(scope="session")
def session_span_exporter() -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    tracer_provider = TracerProvider()
    tracer_provider.add_span_processor(SimpleSpanProcessor(exporter))
    trace.set_tracer_provider(tracer_provider)
    return exporter


@fixture
def span_exporter(session_span_exporter: InMemorySpanExporter) -> Generator[InMemorySpanExporter]:
    """Fixture that collects the spans finished during one test."""
    session_span_exporter.clear()
    yield session_span_exporter
    # Clean up
    session_span_exporter.clear()
