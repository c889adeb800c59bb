# Copyright (c) Microsoft. All rights reserved.

import re
from collections.abc import Sequence
from enum import Enum
from typing import Annotated, Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

__all__ = [
    "CLEAR_MESSAGES",
    "TERMINATE",
    "ChatMessage",
    "Contents",
    "DataContent",
    "FunctionCallContent",
    "FunctionContract",
    "FunctionResultContent",
    "GenerateReplyOptions",
    "MessageKind",
    "Role",
    "TextContent",
    "UriContent",
    "is_clear_message",
    "is_terminate_message",
]

# Any message whose text contains this token ends the conversation.
TERMINATE = "TERMINATE"
# Any message whose text contains this token resets the context handed to agents.
CLEAR_MESSAGES = "[GROUPCHAT_CLEAR_MESSAGES]"

URI_PATTERN = re.compile(r"^data:(?P<media_type>[^;]+);base64,(?P<base64_data>[A-Za-z0-9+/=]+)$")


class Role(str, Enum):
    """Describes the intended purpose of a message within a chat interaction.

    Properties:
        SYSTEM: The role that instructs or sets the behavior of the AI system.
        USER: The role that provides user input for chat interactions.
        ASSISTANT: The role that provides responses to system-instructed, user-prompted input.
        TOOL: The role that provides additional information and references in response to tool use requests.
    """

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"

    def __str__(self) -> str:
        """Returns the string representation of the role."""
        return self.value


class MessageKind(str, Enum):
    """The variant of a chat message, derived from its contents."""

    TEXT = "text"
    TOOL_CALL = "tool_call"
    TOOL_CALL_RESULT = "tool_call_result"
    AGGREGATE = "aggregate"
    MULTI_MODAL = "multi_modal"

    def __str__(self) -> str:
        return self.value


# region Contents


class BaseContent(BaseModel):
    """Base class for the immutable content items of a chat message."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)


class TextContent(BaseContent):
    """Represents text content in a chat.

    Attributes:
        text: The text content represented by this instance.
        type: The type of content, which is always "text" for this class.
    """

    type: Literal["text"] = "text"
    text: str


class DataContent(BaseContent):
    """Represents binary data carried inline as a base64 ``data:`` URI.

    Attributes:
        uri: The data URI, e.g. ``data:image/png;base64,iVBOR...``.
        media_type: The media type of the data. Inferred from the URI when omitted.
    """

    type: Literal["data"] = "data"
    uri: str
    media_type: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _validate_uri(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        match = URI_PATTERN.match(data.get("uri") or "")
        if not match:
            raise ValueError(f"Invalid data uri format: {str(data.get('uri'))[:32]}")
        if data.get("media_type") is None:
            data = {**data, "media_type": match.group("media_type")}
        return data


class UriContent(BaseContent):
    """Represents a reference to remote content such as an image or a document.

    Attributes:
        uri: The location of the content.
        media_type: The media type of the referenced content.
    """

    type: Literal["uri"] = "uri"
    uri: str
    media_type: str


class FunctionCallContent(BaseContent):
    """Represents a function call request.

    Attributes:
        call_id: The function call identifier.
        name: The name of the function requested.
        arguments: The arguments requested to be provided to the function.
    """

    type: Literal["function_call"] = "function_call"
    call_id: str
    name: str
    arguments: str | dict[str, Any] | None = None


class FunctionResultContent(BaseContent):
    """Represents the result of a function call.

    Attributes:
        call_id: The identifier of the function call for which this is the result.
        result: The result of the function call, or a generic error message if the function call failed.
        exception: A description of the exception if the function call failed.
    """

    type: Literal["function_result"] = "function_result"
    call_id: str
    result: Any = None
    exception: str | None = None


Contents = Annotated[
    TextContent | DataContent | UriContent | FunctionCallContent | FunctionResultContent,
    Field(discriminator="type"),
]


# region ChatMessage


class ChatMessage(BaseModel):
    """Represents an immutable chat message.

    Attributes:
        role: The role of the author of the message.
        contents: The chat message content items.
        author_name: The name of the agent that sent the message, if any.
        message_id: The ID of the chat message.

    Examples:
        .. code-block:: python

            from agent_groupchat import ChatMessage, Role

            message = ChatMessage(role=Role.ASSISTANT, text="Hello", author_name="coder")
            assert message.text == "Hello"
            assert message.kind == "text"
    """

    model_config = ConfigDict(frozen=True)

    role: Role
    contents: tuple[Contents, ...] = ()
    author_name: str | None = None
    message_id: str = Field(default_factory=lambda: str(uuid4()))

    @model_validator(mode="before")
    @classmethod
    def _fold_text(cls, data: Any) -> Any:
        """Turn the ``text=`` convenience argument into a TextContent item."""
        if isinstance(data, dict) and "text" in data:
            data = dict(data)
            text = data.pop("text")
            contents = data.get("contents") or []
            contents = [contents] if isinstance(contents, BaseContent | dict) else list(contents)
            if text is not None:
                contents.append(TextContent(text=text))
            data["contents"] = contents
        return data

    @field_validator("contents", mode="before")
    @classmethod
    def _coerce_contents(cls, value: Any) -> Any:
        if isinstance(value, BaseContent | dict):
            return (value,)
        return value

    @property
    def text(self) -> str:
        """Returns the text payload of the message.

        Remarks:
            This concatenates the text of all TextContent items. A message without
            text content (a tool call result) exposes its function results instead.
        """
        texts = [content.text for content in self.contents if isinstance(content, TextContent)]
        if texts:
            return " ".join(texts)
        return "\n".join(
            str(content.result) for content in self.contents if isinstance(content, FunctionResultContent)
        )

    @property
    def kind(self) -> MessageKind:
        """Classify the message by the contents it carries."""
        has_calls = any(isinstance(c, FunctionCallContent) for c in self.contents)
        has_results = any(isinstance(c, FunctionResultContent) for c in self.contents)
        if has_calls and has_results:
            return MessageKind.AGGREGATE
        if has_calls:
            return MessageKind.TOOL_CALL
        if has_results:
            return MessageKind.TOOL_CALL_RESULT
        if any(isinstance(c, DataContent | UriContent) for c in self.contents):
            return MessageKind.MULTI_MODAL
        return MessageKind.TEXT

    def __str__(self) -> str:
        sender = self.author_name or self.role.value
        return f"{sender}: {self.text}"


def is_terminate_message(message: ChatMessage | None) -> bool:
    """Return True if the message ends the conversation.

    The check is a substring match, so decorated text such as ``"done. TERMINATE"`` counts.
    """
    return message is not None and TERMINATE in message.text


def is_clear_message(message: ChatMessage | None) -> bool:
    """Return True if the message asks to clear the conversation context."""
    return message is not None and CLEAR_MESSAGES in message.text


# region Options


class FunctionContract(BaseModel):
    """Describes a function an agent may offer to its model.

    Attributes:
        name: The function name.
        description: A description the model uses to decide when to call it.
        parameters: The JSON schema of the function parameters.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    description: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)


class GenerateReplyOptions(BaseModel):
    """Settings for a single reply generation.

    Unset options defer to the agent's own defaults. Keys other than the
    recognized ones are accepted and kept, conforming agents ignore them.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, gt=0)
    stop_sequences: tuple[str, ...] | None = None
    tools: tuple[FunctionContract, ...] | None = None

    @field_validator("stop_sequences", mode="before")
    @classmethod
    def _coerce_stop_sequences(cls, value: Any) -> Any:
        if isinstance(value, str):
            return (value,)
        if isinstance(value, Sequence | set | frozenset):
            return tuple(value)
        return value

    def __and__(self, other: object) -> "GenerateReplyOptions":
        """Combine two option sets, values set on ``other`` take precedence."""
        if not isinstance(other, GenerateReplyOptions):
            return NotImplemented
        merged = self.model_dump(exclude_none=True)
        merged.update(other.model_dump(exclude_none=True))
        return GenerateReplyOptions(**merged)
