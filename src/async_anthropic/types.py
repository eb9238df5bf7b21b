"""Messages and Models API type definitions.

Content blocks and stream deltas are tagged unions keyed on `type`. Tags this
client does not know decode into `UnknownContent` / `UnknownDelta` instead of
failing, so newer server payloads still parse.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    SerializerFunctionWrapHandler,
    Tag,
    model_serializer,
)

DEFAULT_MAX_TOKENS = 2048


def _tag_or_unknown(known: frozenset[str]):
    def discriminate(value: Any) -> str:
        if isinstance(value, dict):
            kind = value.get("type")
        else:
            kind = getattr(value, "type", None)
        return kind if kind in known else "unknown"

    return discriminate


# =============================================================================
# Shared
# =============================================================================


class Usage(BaseModel):
    """Token accounting."""

    input_tokens: int | None = None
    output_tokens: int | None = None
    cache_creation_input_tokens: int | None = None
    cache_read_input_tokens: int | None = None


class CacheControl(BaseModel):
    """Prompt caching marker."""

    type: Literal["ephemeral"] = "ephemeral"
    ttl: Literal["5m", "1h"] | None = None


class MessageRole(str, Enum):
    """Author of a message."""

    USER = "user"
    ASSISTANT = "assistant"


# =============================================================================
# Content blocks
# =============================================================================


class Text(BaseModel):
    type: Literal["text"] = "text"
    text: str
    cache_control: CacheControl | None = None


class ToolUse(BaseModel):
    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: Any = Field(default_factory=dict)
    cache_control: CacheControl | None = None


class ToolResult(BaseModel):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: str | None = None
    is_error: bool = False
    cache_control: CacheControl | None = None


class Thinking(BaseModel):
    type: Literal["thinking"] = "thinking"
    thinking: str
    signature: str | None = None


class RedactedThinking(BaseModel):
    """Thinking the safety systems encrypted; send it back unchanged."""

    type: Literal["redacted_thinking"] = "redacted_thinking"
    data: str


class UnknownContent(BaseModel):
    """A content block type this client does not model. Fields are kept."""

    model_config = ConfigDict(extra="allow")

    type: str


_CONTENT_TYPES = frozenset({"text", "tool_use", "tool_result", "thinking", "redacted_thinking"})

MessageContent = Annotated[
    Union[
        Annotated[Text, Tag("text")],
        Annotated[ToolUse, Tag("tool_use")],
        Annotated[ToolResult, Tag("tool_result")],
        Annotated[Thinking, Tag("thinking")],
        Annotated[RedactedThinking, Tag("redacted_thinking")],
        Annotated[UnknownContent, Tag("unknown")],
    ],
    Discriminator(_tag_or_unknown(_CONTENT_TYPES)),
]


class Message(BaseModel):
    """A conversation turn."""

    role: MessageRole = MessageRole.USER
    content: str | list[MessageContent]

    @classmethod
    def user(cls, text: str) -> Message:
        return cls(role=MessageRole.USER, content=text)

    @classmethod
    def assistant(cls, text: str) -> Message:
        return cls(role=MessageRole.ASSISTANT, content=text)

    def _blocks(self) -> list[Any]:
        if isinstance(self.content, str):
            return [Text(text=self.content)]
        return list(self.content)

    def text(self) -> str | None:
        """First text block, if any."""
        return next((b.text for b in self._blocks() if isinstance(b, Text)), None)

    def tool_uses(self) -> list[ToolUse]:
        return [b for b in self._blocks() if isinstance(b, ToolUse)]


# =============================================================================
# Requests
# =============================================================================


class ExtendedThinking(BaseModel):
    type: Literal["enabled"] = "enabled"
    budget_tokens: int


class ToolChoice(BaseModel):
    """How the model may pick tools: auto, any, a named tool, or none."""

    type: Literal["auto", "any", "tool", "none"] = "auto"
    name: str | None = None
    disable_parallel_tool_use: bool | None = None


class CustomTool(BaseModel):
    """A client-defined tool described by a JSON schema."""

    name: str
    description: str | None = None
    input_schema: dict[str, Any] = Field(default_factory=lambda: {"type": "object"})
    cache_control: CacheControl | None = None


class CreateMessagesRequest(BaseModel):
    """Body of `POST /v1/messages`.

    Server-defined tools (bash, web search, ...) can be given as plain dicts
    in `tools`; they are passed through unchanged.
    """

    model: str
    messages: list[Message]
    max_tokens: int = DEFAULT_MAX_TOKENS
    system: str | list[Text] | None = None
    thinking: ExtendedThinking | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    stop_sequences: list[str] = Field(default_factory=list)
    stream: bool = False
    temperature: float | None = None
    tool_choice: ToolChoice | None = None
    tools: list[
        Annotated[Union[dict[str, Any], CustomTool], Field(union_mode="left_to_right")]
    ] = Field(default_factory=list)
    top_k: int | None = None
    top_p: float | None = None

    @model_serializer(mode="wrap")
    def _drop_empty(self, handler: SerializerFunctionWrapHandler) -> dict[str, Any]:
        data = handler(self)
        for key in ("metadata", "stop_sequences", "tools"):
            if not data.get(key):
                data.pop(key, None)
        return data


# =============================================================================
# Responses
# =============================================================================


class CreateMessagesResponse(BaseModel):
    id: str | None = None
    type: str | None = None
    role: MessageRole = MessageRole.ASSISTANT
    content: list[MessageContent] = Field(default_factory=list)
    model: str | None = None
    stop_reason: str | None = None
    stop_sequence: str | None = None
    usage: Usage | None = None

    def messages(self) -> list[Message]:
        """The reply content as assistant messages, ready to append to a conversation."""
        return [Message(role=MessageRole.ASSISTANT, content=[block]) for block in self.content]

    def text(self) -> str:
        """All text blocks concatenated."""
        return "".join(b.text for b in self.content if isinstance(b, Text))


class Model(BaseModel):
    id: str
    display_name: str
    created_at: str
    model_type: str = Field(default="model", alias="type")

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())


class ListModelsResponse(BaseModel):
    data: list[Model] = Field(default_factory=list)
    first_id: str | None = None
    last_id: str | None = None
    has_more: bool = False


# =============================================================================
# Streaming
# =============================================================================


class TextDelta(BaseModel):
    type: Literal["text_delta"] = "text_delta"
    text: str


class ThinkingDelta(BaseModel):
    type: Literal["thinking_delta"] = "thinking_delta"
    thinking: str


class SignatureDelta(BaseModel):
    type: Literal["signature_delta"] = "signature_delta"
    signature: str


class InputJsonDelta(BaseModel):
    type: Literal["input_json_delta"] = "input_json_delta"
    partial_json: str


class UnknownDelta(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str


_DELTA_TYPES = frozenset({"text_delta", "thinking_delta", "signature_delta", "input_json_delta"})

ContentBlockDelta = Annotated[
    Union[
        Annotated[TextDelta, Tag("text_delta")],
        Annotated[ThinkingDelta, Tag("thinking_delta")],
        Annotated[SignatureDelta, Tag("signature_delta")],
        Annotated[InputJsonDelta, Tag("input_json_delta")],
        Annotated[UnknownDelta, Tag("unknown")],
    ],
    Discriminator(_tag_or_unknown(_DELTA_TYPES)),
]


class MessageStart(BaseModel):
    id: str
    model: str
    role: MessageRole = MessageRole.ASSISTANT
    content: list[MessageContent] = Field(default_factory=list)
    stop_reason: str | None = None
    stop_sequence: str | None = None
    usage: Usage | None = None


class MessageDelta(BaseModel):
    stop_reason: str | None = None
    stop_sequence: str | None = None


class MessageStartEvent(BaseModel):
    type: Literal["message_start"] = "message_start"
    message: MessageStart
    usage: Usage | None = None


class ContentBlockStartEvent(BaseModel):
    type: Literal["content_block_start"] = "content_block_start"
    index: int
    content_block: MessageContent


class ContentBlockDeltaEvent(BaseModel):
    type: Literal["content_block_delta"] = "content_block_delta"
    index: int
    delta: ContentBlockDelta


class ContentBlockStopEvent(BaseModel):
    type: Literal["content_block_stop"] = "content_block_stop"
    index: int


class MessageDeltaEvent(BaseModel):
    type: Literal["message_delta"] = "message_delta"
    delta: MessageDelta
    usage: Usage | None = None


class MessageStopEvent(BaseModel):
    type: Literal["message_stop"] = "message_stop"


MessagesStreamEvent = Annotated[
    MessageStartEvent
    | ContentBlockStartEvent
    | ContentBlockDeltaEvent
    | ContentBlockStopEvent
    | MessageDeltaEvent
    | MessageStopEvent,
    Field(discriminator="type"),
]

MESSAGES_STREAM_EVENT_TYPES = (
    "message_start",
    "content_block_start",
    "content_block_delta",
    "content_block_stop",
    "message_delta",
    "message_stop",
)
