from .client import LLMDispatcher
from .config import Settings, api_key_for
from .errors import (
    LLMRelayError,
    NetworkError,
    ProviderError,
    ParseError,
    SafetyBlockError,
    AbortError,
    InvalidMessageError,
    UnsupportedDocumentError,
)
from .logging_setup import setup_logging
from .normalize import normalize_messages
from .rich_printer import RichPrinter, RichStreamPrinter
from .tool_calls import ToolLoop
from .types import (
    AudioPart,
    CallOptions,
    CanonicalMessage,
    FilePart,
    ImagePart,
    LLMRequest,
    ResponseEnvelope,
    StreamChunk,
    TextPart,
    ToolCall,
    VideoPart,
)

__all__ = [
    "LLMDispatcher",
    "Settings",
    "api_key_for",
    "LLMRelayError",
    "NetworkError",
    "ProviderError",
    "ParseError",
    "SafetyBlockError",
    "AbortError",
    "InvalidMessageError",
    "UnsupportedDocumentError",
    "setup_logging",
    "normalize_messages",
    "RichPrinter",
    "RichStreamPrinter",
    "ToolLoop",
    "AudioPart",
    "CallOptions",
    "CanonicalMessage",
    "FilePart",
    "ImagePart",
    "LLMRequest",
    "ResponseEnvelope",
    "StreamChunk",
    "TextPart",
    "ToolCall",
    "VideoPart",
]
