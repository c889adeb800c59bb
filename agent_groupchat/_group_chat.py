# Copyright (c) Microsoft. All rights reserved.

"""Group chat orchestration.

The orchestrator drives one conversation among several agents:

- ``GroupChat`` validates its members and workflow at construction, then runs
  rounds. Each round selects the next speaker, invokes it on the conversation so
  far and appends the reply, until a terminal message or the round budget.
- Speaker selection consults the ``Workflow`` first. When the graph leaves more
  than one candidate, the admin agent arbitrates by role-playing the transcript
  and naming the next speaker (``From <name>:``).
- ``RoundRobinGroupChat`` and ``send`` wire the common fixed-order cases.

Failures inside a round never escape ``run``: they end the conversation with a
synthetic terminal message instead.
"""

import asyncio
from collections.abc import Sequence
from typing import Any

from ._agents import AgentProtocol
from ._logging import get_logger
from ._settings import GROUP_CHAT_DEFAULTS, GroupChatSettings, load_settings
from ._types import TERMINATE, ChatMessage, GenerateReplyOptions, Role, is_clear_message, is_terminate_message
from ._workflow import Transition, Workflow
from .exceptions import (
    GroupChatValidationError,
    ProviderError,
    SpeakerResolutionError,
    WorkflowExhaustionError,
)
from .observability import (
    GroupChatObserver,
    OtelAttr,
    TerminationReason,
    capture_exception,
    create_group_chat_span,
    notify_observers,
)

__all__ = ["GroupChat", "RoundRobinGroupChat", "run", "run_sync", "send"]

logger = get_logger("agent_groupchat.group_chat")

ROLE_PLAY_INSTRUCTION = """You are in a role play game. Carefully read the conversation history and carry on the conversation.
The available roles are:
{names}

Each message will start with 'From name:', e.g:
From {first_name}:
//your message//.

Your response should similarly identify the next role to speak, and what they say next.

If the role play scenario is complete, your reply should include the text: {terminate}."""

ROLE_PLAY_PREFIX = "From "

_COUNT_SETTINGS = ("max_round", "max_attempts", "speaker_selection_attempts", "arbitration_max_tokens")


def _last_clear_index(messages: Sequence[ChatMessage]) -> int:
    for index in range(len(messages) - 1, -1, -1):
        if is_clear_message(messages[index]):
            return index
    return -1


def _after_last_clear(messages: Sequence[ChatMessage]) -> list[ChatMessage]:
    """Drop every message up to and including the last clear-history message."""
    return list(messages[_last_clear_index(messages) + 1 :])


def parse_role_play_reply(text: str) -> str | None:
    """Extract the speaker name from an arbitration reply such as ``From coder:``.

    Only the first line is considered. The ``From`` prefix is matched
    case-insensitively and is required; without it the reply names no one and
    ``None`` is returned.
    """
    lines = text.strip().splitlines()
    first_line = lines[0].strip() if lines else ""
    if first_line[: len(ROLE_PLAY_PREFIX)].lower() != ROLE_PLAY_PREFIX.lower():
        return None
    return first_line[len(ROLE_PLAY_PREFIX) :].strip().rstrip(":").strip()


class GroupChat:
    """Orchestrates a conversation among named agents.

    Args:
        members: The participating agents, in declaration order. The first member
            speaks first when a run starts without seed messages.
        admin: Optional agent that arbitrates between several candidate speakers.
        workflow: Optional transition graph constraining who may speak after whom. It is
            copied at construction; later changes to it do not affect the chat.
        initialize_messages: Messages prepended to every agent's context and to the
            arbitration transcript.
        observers: Receivers of round, message and termination events.
        env_file_path: ``.env`` file to read ``GROUPCHAT_*`` settings from.
        settings_overrides: Explicit values for any ``GroupChatSettings`` key.

    Raises:
        GroupChatValidationError: The members, workflow, admin or settings are inconsistent.

    Examples:
        .. code-block:: python

            from agent_groupchat import GroupChat, Transition, Workflow

            workflow = Workflow([Transition(coder, reviewer), Transition(reviewer, coder)])
            chat = GroupChat([coder, reviewer], workflow=workflow, max_round=6)
            history = await chat.run([ChatMessage(role="user", text="Write a parser")])
    """

    def __init__(
        self,
        members: Sequence[AgentProtocol],
        admin: AgentProtocol | None = None,
        workflow: Workflow | None = None,
        initialize_messages: Sequence[ChatMessage] | None = None,
        observers: Sequence[GroupChatObserver] | None = None,
        env_file_path: str | None = None,
        **settings_overrides: Any,
    ) -> None:
        self._members = list(members)
        self.admin = admin
        self._workflow = workflow.copy() if workflow is not None else None
        self._initialize_messages: list[ChatMessage] = list(initialize_messages or [])
        self.observers: list[GroupChatObserver] = list(observers or [])
        self._validate()
        self.settings: GroupChatSettings = load_settings(
            GroupChatSettings,
            env_prefix="GROUPCHAT_",
            env_file_path=env_file_path,
            defaults=GROUP_CHAT_DEFAULTS,
            **settings_overrides,
        )
        self._validate_settings()

    def _validate(self) -> None:
        if not self._members:
            raise GroupChatValidationError("A group chat needs at least one member.")

        if any(not isinstance(member.name, str) or not member.name.strip() for member in self._members):
            raise GroupChatValidationError("All agents must have a name.")

        names = [member.name for member in self._members]
        if len(set(names)) != len(names):
            duplicates = sorted({name for name in names if names.count(name) > 1})
            raise GroupChatValidationError(f"All agents must have a unique name, duplicated: {', '.join(duplicates)}.")

        if self._workflow is not None:
            unknown = [name for name in self._workflow.agent_names if name not in names]
            if unknown:
                raise GroupChatValidationError(
                    f"All agents in the workflow must be in the group chat, unknown: {', '.join(unknown)}."
                )

        if self.admin is None and self._workflow is None:
            raise GroupChatValidationError("Must provide one of admin or workflow.")

    def _validate_settings(self) -> None:
        for key in _COUNT_SETTINGS:
            value = self.settings.get(key)
            if value is None or value < 1:
                raise GroupChatValidationError(f"Setting '{key}' must be a positive integer, got {value!r}.")
        retry_delay = self.settings.get("retry_delay")
        if retry_delay is None or retry_delay < 0:
            raise GroupChatValidationError(f"Setting 'retry_delay' must not be negative, got {retry_delay!r}.")

    @property
    def members(self) -> list[AgentProtocol]:
        """The members in declaration order."""
        return list(self._members)

    @property
    def workflow(self) -> Workflow | None:
        """A copy of the workflow validated at construction, or ``None``."""
        return self._workflow.copy() if self._workflow is not None else None

    @property
    def initialize_messages(self) -> list[ChatMessage]:
        return list(self._initialize_messages)

    def send_introduction(self, message: ChatMessage) -> None:
        """Add a message every agent sees before the conversation itself."""
        self._initialize_messages.append(message)

    def add_initialize_message(self, message: ChatMessage) -> None:
        self.send_introduction(message)

    def _member(self, name: str) -> AgentProtocol | None:
        return next((member for member in self._members if member.name == name), None)

    # region Conversation shaping

    def process_conversation_for_agent(self, messages: Sequence[ChatMessage]) -> list[ChatMessage]:
        """The context handed to the speaker: introductions, then history since the last clear."""
        return [*self._initialize_messages, *_after_last_clear(messages)]

    def process_conversation_for_role_play(self, messages: Sequence[ChatMessage]) -> list[ChatMessage]:
        """Render the conversation as a role-play transcript for the admin.

        Every message becomes a user message attributed to its original sender::

            From coder:
            <text>
            <eof_msg>
            round # 3
        """
        transcript = []
        for index, message in enumerate(self.process_conversation_for_agent(messages)):
            sender = message.author_name or message.role.value
            transcript.append(
                ChatMessage(
                    role=Role.USER,
                    text=f"From {sender}:\n{message.text}\n<eof_msg>\nround # {index}",
                    author_name=message.author_name,
                )
            )
        return transcript

    # region Speaker selection

    async def select_next_speaker(
        self,
        current_speaker: AgentProtocol,
        messages: Sequence[ChatMessage],
    ) -> AgentProtocol | None:
        """Decide who speaks after ``current_speaker``.

        Returns:
            The next speaker, or ``None`` when the admin ended the conversation or
            named no candidate within the allowed attempts.

        Raises:
            WorkflowExhaustionError: The workflow allows no one after ``current_speaker``.
            SpeakerResolutionError: Several candidates remain and there is no admin, or the
                workflow names an agent outside the chat.
        """
        attributes = {OtelAttr.SPEAKER: current_speaker.name}
        with create_group_chat_span(OtelAttr.SELECT_SPEAKER_SPAN, attributes) as span:
            try:
                candidates = await self._candidates(current_speaker, messages)
                span.set_attribute(OtelAttr.CANDIDATES.value, [candidate.name for candidate in candidates])
                if len(candidates) == 1:
                    logger.debug(f"'{candidates[0].name}' is the only candidate after '{current_speaker.name}'.")
                    return candidates[0]
                if self.admin is None:
                    raise SpeakerResolutionError(
                        f"No admin is provided to choose between {', '.join(c.name for c in candidates)}."
                    )
                return await self._role_play_next_speaker(self.admin, candidates, messages)
            except Exception as exception:
                capture_exception(span, exception)
                raise

    async def _candidates(self, current_speaker: AgentProtocol, messages: Sequence[ChatMessage]) -> list[AgentProtocol]:
        if self._workflow is None:
            return list(self._members)
        available = await self._workflow.candidates(current_speaker, messages)
        if not available:
            raise WorkflowExhaustionError(
                f"No next available agents found in the current workflow after '{current_speaker.name}'."
            )
        # transitions may reference the unwrapped agent, the member is what speaks
        candidates = []
        for agent in available:
            member = self._member(agent.name)
            if member is None:
                raise SpeakerResolutionError(f"The agent '{agent.name}' is not in the group chat.")
            candidates.append(member)
        return candidates

    async def _role_play_next_speaker(
        self,
        admin: AgentProtocol,
        candidates: Sequence[AgentProtocol],
        messages: Sequence[ChatMessage],
    ) -> AgentProtocol | None:
        names = [candidate.name for candidate in candidates]
        instruction = ChatMessage(
            role=Role.SYSTEM,
            text=ROLE_PLAY_INSTRUCTION.format(names=",".join(names), first_name=names[0], terminate=TERMINATE),
        )
        transcript = [instruction, *self.process_conversation_for_role_play(messages)]
        options = GenerateReplyOptions(
            temperature=0,
            max_tokens=self.settings["arbitration_max_tokens"],
            stop_sequences=(":",),
            tools=(),
        )

        attempts = self.settings["speaker_selection_attempts"]
        for attempt in range(1, attempts + 1):
            reply = await admin.generate_reply(transcript, options)
            if is_terminate_message(reply):
                logger.info(f"Admin '{admin.name}' ended the conversation during speaker selection.")
                return None
            try:
                return self._resolve_speaker(reply.text, candidates)
            except SpeakerResolutionError as ex:
                logger.warning(f"Speaker selection attempt {attempt}/{attempts} failed: {ex}")
        return None

    @staticmethod
    def _resolve_speaker(reply_text: str, candidates: Sequence[AgentProtocol]) -> AgentProtocol:
        name = parse_role_play_reply(reply_text)
        if name is None:
            raise SpeakerResolutionError(f"The reply does not start with '{ROLE_PLAY_PREFIX}<name>:'.")
        for candidate in candidates:
            if candidate.name.casefold() == name.casefold():
                return candidate
        raise SpeakerResolutionError(f"No member of the chat named '{name}'.")

    # region Round loop

    def _seed_speaker(self, message: ChatMessage) -> AgentProtocol:
        if message.author_name is None:
            return self._members[0]
        speaker = self._member(message.author_name)
        if speaker is None:
            raise SpeakerResolutionError(f"The agent '{message.author_name}' is not in the group chat.")
        return speaker

    def _terminal_message(self, text: str) -> ChatMessage:
        return ChatMessage(
            role=Role.ASSISTANT,
            text=f"{text}\n\n{TERMINATE}",
            author_name=self.admin.name if self.admin is not None else None,
        )

    async def _generate_reply_with_retry(
        self,
        speaker: AgentProtocol,
        messages: Sequence[ChatMessage],
    ) -> ChatMessage:
        max_attempts = self.settings["max_attempts"]
        attempt = 1
        while True:
            try:
                return await speaker.generate_reply(messages)
            except ProviderError as ex:
                if not ex.transient or attempt >= max_attempts:
                    raise
                if ex.retry_after is not None:
                    delay = ex.retry_after.total_seconds()
                else:
                    delay = self.settings["retry_delay"] * attempt
                logger.warning(
                    f"Agent '{speaker.name}' failed transiently (attempt {attempt}/{max_attempts}), "
                    f"retrying in {delay:.2f}s: {ex}"
                )
                await asyncio.sleep(delay)
                attempt += 1

    async def _play_round(
        self,
        round_index: int,
        last_speaker: AgentProtocol,
        speaker: AgentProtocol | None,
        history: Sequence[ChatMessage],
    ) -> tuple[ChatMessage, AgentProtocol | None, TerminationReason | None]:
        """Play one round and return the message to append, its speaker and why to stop, if at all."""
        with create_group_chat_span(OtelAttr.ROUND_SPAN, {OtelAttr.ROUND_INDEX: round_index}) as span:
            try:
                if speaker is None:
                    speaker = await self.select_next_speaker(last_speaker, history)
            except WorkflowExhaustionError as ex:
                capture_exception(span, ex)
                logger.warning(f"Round {round_index}: {ex}")
                return self._terminal_message(f"{type(ex).__name__}: {ex}"), None, TerminationReason.WORKFLOW_EXHAUSTED
            except Exception as ex:
                capture_exception(span, ex)
                logger.error(f"Round {round_index}: speaker selection failed: {ex}")
                return self._terminal_message(f"{type(ex).__name__}: {ex}"), None, TerminationReason.ERROR

            if speaker is None:
                logger.info(f"Round {round_index}: no next speaker after '{last_speaker.name}'.")
                return (
                    self._terminal_message(f"No next speaker was selected after '{last_speaker.name}'."),
                    None,
                    TerminationReason.NO_NEXT_SPEAKER,
                )

            span.set_attribute(OtelAttr.SPEAKER.value, speaker.name)
            await notify_observers(self.observers, "on_round_start", round_index, speaker)

            try:
                reply = await self._generate_reply_with_retry(speaker, self.process_conversation_for_agent(history))
            except Exception as ex:
                capture_exception(span, ex)
                logger.error(f"Round {round_index}: agent '{speaker.name}' failed: {ex}")
                return self._terminal_message(f"{type(ex).__name__}: {ex}"), None, TerminationReason.ERROR

            if is_terminate_message(reply):
                return reply, speaker, TerminationReason.TERMINATE_MESSAGE
            return reply, speaker, None

    async def run(
        self,
        messages: Sequence[ChatMessage] | None = None,
        max_round: int | None = None,
    ) -> list[ChatMessage]:
        """Run the conversation and return its full history, seed messages included.

        Args:
            messages: Seed messages. The author of the last one is treated as the
                previous speaker; without seed messages the first member speaks first.
            max_round: Round budget, defaults to the ``max_round`` setting. Each round
                appends exactly one message.

        Raises:
            GroupChatValidationError: ``max_round`` is negative.
            SpeakerResolutionError: The last seed message names an agent outside the chat.
        """
        max_round = self.settings["max_round"] if max_round is None else max_round
        if max_round < 0:
            raise GroupChatValidationError(f"max_round must not be negative, got {max_round}.")

        history = list(messages or [])
        if history:
            last_speaker = self._seed_speaker(history[-1])
            next_speaker: AgentProtocol | None = None
        else:
            last_speaker = next_speaker = self._members[0]

        attributes = {
            OtelAttr.MEMBERS: [member.name for member in self._members],
            OtelAttr.MAX_ROUND: max_round,
        }
        with create_group_chat_span(OtelAttr.RUN_SPAN, attributes) as span:
            reason = TerminationReason.MAX_ROUND
            round_index = 0
            while round_index < max_round:
                message, speaker, stop = await self._play_round(round_index, last_speaker, next_speaker, history)
                next_speaker = None
                history.append(message)
                await notify_observers(self.observers, "on_message", message)
                if speaker is not None:
                    last_speaker = speaker
                if stop is not None:
                    reason = stop
                    break
                round_index += 1

            span.set_attribute(OtelAttr.TERMINATION_REASON.value, reason.value)
            span.set_attribute(OtelAttr.MESSAGE_COUNT.value, len(history))
            logger.info(f"Group chat finished after {round_index} round(s): {reason}.")
            await notify_observers(self.observers, "on_terminated", reason, history[-1] if history else None)
        return history

    def __repr__(self) -> str:
        return f"{type(self).__name__}(members={[member.name for member in self._members]!r})"


class RoundRobinGroupChat(GroupChat):
    """A group chat whose members speak in declaration order, cycling back to the first."""

    def __init__(self, members: Sequence[AgentProtocol], admin: AgentProtocol | None = None, **kwargs: Any) -> None:
        members = list(members)
        transitions = [
            Transition(member, members[(index + 1) % len(members)]) for index, member in enumerate(members)
        ]
        super().__init__(members, admin=admin, workflow=Workflow(transitions), **kwargs)


async def send(
    sender: AgentProtocol,
    receiver: AgentProtocol,
    messages: Sequence[ChatMessage] | None = None,
    max_round: int = 10,
    **kwargs: Any,
) -> list[ChatMessage]:
    """Let two agents talk in turns; the sender speaks first when there are no seed messages."""
    chat = RoundRobinGroupChat([sender, receiver], **kwargs)
    return await chat.run(messages, max_round=max_round)


async def run(
    group_chat: GroupChat,
    messages: Sequence[ChatMessage] | None = None,
    max_round: int | None = None,
) -> list[ChatMessage]:
    """Run ``group_chat``; see ``GroupChat.run``."""
    return await group_chat.run(messages, max_round)


def run_sync(
    group_chat: GroupChat,
    messages: Sequence[ChatMessage] | None = None,
    max_round: int | None = None,
) -> list[ChatMessage]:
    """Run ``group_chat`` to completion from code that has no running event loop."""
    return asyncio.run(group_chat.run(messages, max_round))
