"""
Conversion of external message shapes into the canonical model.

External part shapes (as produced by the chat UI):
    {"type": "text", "text": "..."}
    {"type": "image_url", "image_url": {"url": "...", "mime_type"?: "..."}}
    {"type": "file_url", "file_url": {"url": "...", "mime_type"?: "...", "name"?: "..."}}

Canonical dict shapes ({"type": "image" | "video" | "audio" | "file", "url", ...})
and part dataclasses are accepted as well. Anything else is kept as text.
"""

import json
from dataclasses import replace
from typing import Any, Dict, List, Optional

from .errors import InvalidMessageError
from .media import media_category, mime_type_from_path, parse_data_uri
from .types import (
    ROLES,
    AudioPart,
    CanonicalMessage,
    FilePart,
    ImagePart,
    Part,
    TextPart,
    ToolCall,
    VideoPart,
)


_PART_TYPES = (TextPart, ImagePart, VideoPart, AudioPart, FilePart)


def _resolve_mime(url: str, explicit: Optional[str]) -> str:
    if explicit:
        return explicit
    parsed = parse_data_uri(url)
    if parsed:
        return parsed[0]
    return mime_type_from_path(url)


def _default_name(url: str) -> str:
    if url and not url.startswith("data:"):
        basename = url.rstrip("/").split("/")[-1]
        if basename:
            return basename
    return "file"


def _attachment(url: str, mime_type: str, name: str) -> Part:
    category = media_category(mime_type)
    if category == "video":
        return VideoPart(url=url, mime_type=mime_type, name=name)
    if category == "audio":
        return AudioPart(url=url, mime_type=mime_type, name=name)
    return FilePart(url=url, mime_type=mime_type, name=name)


def normalize_part(part: Any) -> Part:
    """
    Map a single external part to its canonical variant. Never drops content.
    """
    if isinstance(part, _PART_TYPES):
        if isinstance(part, TextPart) or part.mime_type:
            return part
        return replace(part, mime_type=_resolve_mime(part.url, None))

    if isinstance(part, str):
        return TextPart(part)

    if not isinstance(part, dict):
        return TextPart(json.dumps(part, default=str))

    kind = part.get("type")

    if kind == "text":
        return TextPart(str(part.get("text") or ""))

    if kind == "image_url":
        image_url = part.get("image_url") or {}
        if isinstance(image_url, str):
            image_url = {"url": image_url}
        url = image_url.get("url") or ""
        mime = _resolve_mime(url, image_url.get("mime_type") or part.get("mime_type"))
        return ImagePart(url=url, mime_type=mime)

    if kind == "file_url":
        file_url = part.get("file_url") or {}
        if isinstance(file_url, str):
            file_url = {"url": file_url}
        url = file_url.get("url") or ""
        mime = _resolve_mime(url, file_url.get("mime_type") or part.get("mime_type"))
        name = file_url.get("name") or part.get("name") or _default_name(url)
        return _attachment(url, mime, name)

    if kind in ("image", "video", "audio", "file"):
        url = part.get("url") or ""
        mime = _resolve_mime(url, part.get("mime_type"))
        if kind == "image":
            return ImagePart(url=url, mime_type=mime)
        name = part.get("name") or _default_name(url)
        if kind == "video":
            return VideoPart(url=url, mime_type=mime, name=name)
        if kind == "audio":
            return AudioPart(url=url, mime_type=mime, name=name)
        return FilePart(url=url, mime_type=mime, name=name)

    # Unknown shape: keep it as text so nothing is lost
    return TextPart(json.dumps(part, default=str, ensure_ascii=False))


def normalize_content(content: Any) -> List[Part]:
    """
    Normalize message content to an ordered list of canonical parts.

    Args:
        content: A string, a list of parts, or None.

    Returns:
        List[Part]: Canonical parts, in the original order.
    """
    if content is None:
        return []
    if isinstance(content, str):
        return [TextPart(content)]
    if isinstance(content, _PART_TYPES):
        return [normalize_part(content)]
    if not isinstance(content, (list, tuple)):
        return [TextPart(str(content))]
    return [normalize_part(part) for part in content]


def parse_arguments(arguments: Any) -> Dict[str, Any]:
    """
    Decode tool-call arguments. Strings that are not a JSON object are kept
    under '_raw'.
    """
    if isinstance(arguments, dict):
        return arguments
    if not arguments:
        return {}
    try:
        parsed = json.loads(arguments)
    except (json.JSONDecodeError, TypeError):
        return {"_raw": arguments}
    return parsed if isinstance(parsed, dict) else {"_raw": arguments}


def _normalize_tool_call(raw: Any, index: int) -> ToolCall:
    if isinstance(raw, ToolCall):
        return raw

    function = raw.get("function") or {}
    name = raw.get("name") or function.get("name") or ""
    return ToolCall(
        id=raw.get("id") or f"call_{index}",
        name=name,
        arguments=parse_arguments(raw.get("arguments", function.get("arguments"))),
        provider_metadata=raw.get("provider_metadata"),
    )


def normalize_message(message: Any) -> CanonicalMessage:
    """
    Normalize one message (dict or CanonicalMessage).

    Raises:
        InvalidMessageError: If the role is not one of system/user/assistant/tool.
    """
    if isinstance(message, CanonicalMessage):
        if message.role not in ROLES:
            raise InvalidMessageError(f"Unknown message role: {message.role!r}")
        return replace(message, content=normalize_content(message.content))

    if not isinstance(message, dict):
        raise InvalidMessageError(f"Unsupported message type: {type(message).__name__}")

    role = message.get("role")
    if role not in ROLES:
        raise InvalidMessageError(f"Unknown message role: {role!r}")

    raw_calls = message.get("tool_calls")
    tool_calls = None
    if raw_calls:
        tool_calls = [_normalize_tool_call(tc, i) for i, tc in enumerate(raw_calls)]

    return CanonicalMessage(
        role=role,
        content=normalize_content(message.get("content")),
        tool_calls=tool_calls,
        tool_call_id=message.get("tool_call_id"),
        name=message.get("name"),
        active_tool_loop=bool(message.get("active_tool_loop", False)),
    )


def normalize_messages(messages: List[Any]) -> List[CanonicalMessage]:
    """
    Normalize a whole conversation.
    """
    return [normalize_message(msg) for msg in messages]


def extract_text(content: Any) -> str:
    """
    Join the text parts of some content with newlines.
    """
    if isinstance(content, str):
        return content
    parts = content if isinstance(content, list) else []
    return "\n".join(p.text for p in normalize_content(parts) if isinstance(p, TextPart))


def has_multimodal_content(content: Any) -> bool:
    if not isinstance(content, list):
        return False
    return any(not isinstance(p, TextPart) for p in normalize_content(content))


def message_to_dict(message: CanonicalMessage) -> Dict[str, Any]:
    """
    Plain-dict form of a canonical message, e.g. for handing to persistence.
    """
    out: Dict[str, Any] = {
        "role": message.role,
        "content": [_part_to_dict(p) for p in message.content],
    }
    if message.tool_calls:
        out["tool_calls"] = [
            {"id": tc.id, "name": tc.name, "arguments": tc.arguments}
            for tc in message.tool_calls
        ]
    if message.tool_call_id:
        out["tool_call_id"] = message.tool_call_id
    if message.name:
        out["name"] = message.name
    return out


def _part_to_dict(part: Part) -> Dict[str, Any]:
    if isinstance(part, TextPart):
        return {"type": "text", "text": part.text}
    out = {"type": part.type, "url": part.url, "mime_type": part.mime_type}
    if not isinstance(part, ImagePart):
        out["name"] = part.name
    return out
