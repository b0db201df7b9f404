from dataclasses import dataclass, field
from typing import Literal, List, Dict, Any, Union, Optional

# =============================================================================
# Type Definitions
# =============================================================================

# Supported wire formats
ApiFormat = Literal["openai_compatible", "gemini_official"]

# Closed set of message roles
Role = Literal["system", "user", "assistant", "tool"]
ROLES = ("system", "user", "assistant", "tool")


# =============================================================================
# Canonical Content Parts
# =============================================================================

@dataclass(frozen=True)
class TextPart:
    """
    Plain text content.
    """
    text: str
    type: Literal["text"] = field(default="text", init=False)


@dataclass(frozen=True)
class ImagePart:
    """
    Image attachment. `url` may be a local path, a data URI or an http(s) URL.
    """
    url: str
    mime_type: str
    type: Literal["image"] = field(default="image", init=False)


@dataclass(frozen=True)
class VideoPart:
    url: str
    mime_type: str
    name: str
    type: Literal["video"] = field(default="video", init=False)


@dataclass(frozen=True)
class AudioPart:
    url: str
    mime_type: str
    name: str
    type: Literal["audio"] = field(default="audio", init=False)


@dataclass(frozen=True)
class FilePart:
    """
    Any other attachment (PDF, Office documents, text files, ...).
    """
    url: str
    mime_type: str
    name: str
    type: Literal["file"] = field(default="file", init=False)


Part = Union[TextPart, ImagePart, VideoPart, AudioPart, FilePart]
MediaPart = Union[ImagePart, VideoPart, AudioPart, FilePart]


# =============================================================================
# Tool Calling Type Definitions
# =============================================================================

@dataclass(frozen=True)
class GeminiPartMetadata:
    """
    Continuation data for a Gemini function call: the complete original part,
    including its thought signature, echoed back verbatim on the next turn.
    """
    part: Dict[str, Any]
    provider: Literal["gemini_official"] = field(default="gemini_official", init=False)

    @property
    def has_signature(self) -> bool:
        return "thoughtSignature" in self.part or "thought_signature" in self.part


# Tagged variant; one entry per provider that needs continuation data.
ProviderMetadata = Union[GeminiPartMetadata]


@dataclass
class ToolCall:
    """
    Tool call from an LLM response.
    """
    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    provider_metadata: Optional[ProviderMetadata] = None


@dataclass
class ToolCallDelta:
    """
    Incremental tool call from a stream.

    OpenAI-compatible servers send `arguments_fragment` pieces keyed by `index`;
    Gemini sends complete calls with `arguments` already parsed.
    """
    index: int
    id: Optional[str] = None
    name: Optional[str] = None
    arguments_fragment: str = ""
    arguments: Optional[Dict[str, Any]] = None
    provider_metadata: Optional[ProviderMetadata] = None


# =============================================================================
# Messages
# =============================================================================

@dataclass
class CanonicalMessage:
    """
    Provider-agnostic chat message.

    Roles:
    - "system": System prompt / instructions
    - "user": User message
    - "assistant": Model response (may carry tool_calls)
    - "tool": Tool execution result (carries tool_call_id and name)
    """
    role: Role
    content: List[Part] = field(default_factory=list)
    tool_calls: Optional[List[ToolCall]] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None
    active_tool_loop: bool = False


# =============================================================================
# Requests and Responses
# =============================================================================

@dataclass
class CallOptions:
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    tools: Optional[List[Dict[str, Any]]] = None
    tool_choice: Optional[str] = None
    response_format: Optional[Dict[str, Any]] = None
    enable_search: bool = False
    timeout: Optional[float] = None


@dataclass
class LLMRequest:
    """
    Everything needed for one call.

    `messages` may hold raw dict messages or CanonicalMessage instances; the
    dispatcher normalizes them. `provider` is an optional preset key used to
    pick a default base URL when `base_url` is not given.
    """
    messages: List[Any]
    api_format: str
    api_key: str
    model: str
    base_url: Optional[str] = None
    provider: Optional[str] = None
    options: CallOptions = field(default_factory=CallOptions)
    conversation_id: Optional[str] = None


@dataclass
class RequestEnvelope:
    """
    Fully built provider request. Opaque to the dispatcher.
    """
    endpoint: str
    headers: Dict[str, str]
    body: Dict[str, Any]


@dataclass
class StreamChunk:
    delta_text: str = ""
    delta_tool_calls: Optional[List[ToolCallDelta]] = None
    done: bool = False
    error: Optional[str] = None
    blocked: bool = False
    finish_reason: Optional[str] = None
    usage: Optional[Dict[str, Any]] = None


@dataclass
class ResponseEnvelope:
    content: str
    tool_calls: Optional[List[ToolCall]] = None
    finish_reason: Optional[str] = None
    usage: Optional[Dict[str, Any]] = None
    raw: Any = None
    aborted: bool = False
    error: Optional[Exception] = None
    conversation_id: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @classmethod
    def from_error(
        cls,
        error: Exception,
        conversation_id: Optional[str] = None,
        raw: Any = None,
    ) -> "ResponseEnvelope":
        """
        Envelope for a failed call; the content is an inline, renderable message.
        """
        return cls(
            content=f"Error: {error}",
            error=error,
            raw=raw,
            conversation_id=conversation_id,
        )
