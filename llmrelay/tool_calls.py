"""
Helpers for the tool-calling round trip.

A tool-calling exchange is: the model answers with tool calls, the caller runs
the tools and sends their results back, and the model answers again. While
that exchange is in progress its turns are "active" and carry provider
continuation data (Gemini thought signatures). Once it ends, the turns are
persisted without that data.
"""

import json
from dataclasses import replace
from typing import Any, Dict, List, Optional, Union

from .media import is_remote_url, mime_type_from_path, parse_data_uri
from .normalize import normalize_content
from .types import (
    CanonicalMessage,
    GeminiPartMetadata,
    ImagePart,
    Part,
    ResponseEnvelope,
    TextPart,
    ToolCall,
)

ImageInput = Union[str, Dict[str, str]]


def assistant_tool_call_message(
    content: Any,
    tool_calls: List[ToolCall],
    active: bool = True,
) -> CanonicalMessage:
    """
    Create an assistant message that requests tool calls.

    Args:
        content: Text (or parts) the model produced alongside the calls.
        tool_calls (List[ToolCall]): Calls as returned by the provider, with
            their provider metadata.
        active (bool): Whether the message belongs to the in-progress loop.

    Returns:
        CanonicalMessage: The assistant turn.
    """
    return CanonicalMessage(
        role="assistant",
        content=normalize_content(content or None),
        tool_calls=list(tool_calls),
        active_tool_loop=active,
    )


def _image_part(image: ImageInput) -> ImagePart:
    if isinstance(image, dict):
        data = image.get("data") or image.get("url") or ""
        mime_type = image.get("mime_type") or image.get("mimeType")
        if data.startswith("data:") or is_remote_url(data):
            return ImagePart(url=data, mime_type=mime_type or _mime_of(data))
        # raw base64 payload
        mime_type = mime_type or "image/png"
        return ImagePart(url=f"data:{mime_type};base64,{data}", mime_type=mime_type)
    return ImagePart(url=image, mime_type=_mime_of(image))


def _mime_of(url: str) -> str:
    parsed = parse_data_uri(url)
    return parsed[0] if parsed else mime_type_from_path(url)


def tool_result_message(
    tool_call: ToolCall,
    result: Any,
    images: Optional[List[ImageInput]] = None,
    active: bool = True,
) -> CanonicalMessage:
    """
    Create a tool result message answering `tool_call`.

    Non-string results are JSON-encoded. Images may be data URIs, URLs, local
    paths, or `{"data": <base64>, "mime_type": ...}` dicts.
    """
    if not isinstance(result, str):
        result = json.dumps(result, ensure_ascii=False, default=str)

    content: List[Part] = [TextPart(result)]
    content.extend(_image_part(img) for img in images or [])

    return CanonicalMessage(
        role="tool",
        content=content,
        tool_call_id=tool_call.id,
        name=tool_call.name,
        active_tool_loop=active,
    )


def has_continuation_token(message: CanonicalMessage) -> bool:
    """
    True when any tool call of the message still carries a Gemini thought signature.
    """
    for tc in message.tool_calls or []:
        if isinstance(tc.provider_metadata, GeminiPartMetadata) and tc.provider_metadata.has_signature:
            return True
    return False


def strip_provider_metadata(messages: List[CanonicalMessage]) -> List[CanonicalMessage]:
    """
    Persisted-form copies of messages: provider metadata removed and the
    active-loop flag cleared. The input messages are not modified.
    """
    out = []
    for msg in messages:
        tool_calls = None
        if msg.tool_calls:
            tool_calls = [replace(tc, provider_metadata=None) for tc in msg.tool_calls]
        out.append(replace(msg, tool_calls=tool_calls, active_tool_loop=False))
    return out


def summarize_tool_calls(tool_calls: List[ToolCall]) -> str:
    """
    One-line summary of the calls, e.g. `Used tools: get_weather(city="Paris")`.
    """
    if not tool_calls:
        return ""
    rendered = []
    for tc in tool_calls:
        args = ", ".join(
            f"{key}={json.dumps(value, ensure_ascii=False, default=str)}"
            for key, value in (tc.arguments or {}).items()
        )
        rendered.append(f"{tc.name}({args})")
    return "Used tools: " + ", ".join(rendered)


class ToolLoop:
    """
    Tracks one in-progress tool-calling exchange on top of a conversation.

    Example:
        loop = ToolLoop(history)
        response = await dispatcher.call(replace(request, messages=loop.messages()))
        while response.tool_calls:
            loop.add_response(response)
            for call in response.tool_calls:
                loop.add_result(call, run_tool(call))
            response = await dispatcher.call(replace(request, messages=loop.messages()))
        history = loop.close(response.content)
    """

    def __init__(self, history: List[Any]):
        self.history = list(history)
        self.active: List[CanonicalMessage] = []
        self.rounds = 0

    def messages(self) -> List[Any]:
        """
        Conversation to send: the history followed by the active turns.
        """
        return self.history + self.active

    def add_response(self, envelope: ResponseEnvelope) -> CanonicalMessage:
        """
        Record an assistant response that requested tool calls.

        Raises:
            ValueError: If the response has no tool calls.
        """
        if not envelope.tool_calls:
            raise ValueError("Response has no tool calls")
        message = assistant_tool_call_message(envelope.content, envelope.tool_calls)
        self.active.append(message)
        self.rounds += 1
        return message

    def add_result(
        self,
        tool_call: ToolCall,
        result: Any,
        images: Optional[List[ImageInput]] = None,
    ) -> CanonicalMessage:
        message = tool_result_message(tool_call, result, images=images)
        self.active.append(message)
        return message

    def close(self, final_text: str) -> List[Any]:
        """
        End the exchange and return the history to persist.

        The active turns are kept without provider metadata, followed by the
        final assistant answer.
        """
        persisted = self.history + strip_provider_metadata(self.active)
        persisted.append(CanonicalMessage(role="assistant", content=[TextPart(final_text or "")]))
        self.history = persisted
        self.active = []
        return list(persisted)
