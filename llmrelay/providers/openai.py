import copy
import json
import logging
from typing import Dict, Any, List, Optional, Union

from .base import BaseAdapter
from ..capabilities import OPENAI_COMPATIBLE_CAPABILITIES, model_capabilities
from ..errors import ParseError, ProviderError
from ..media import fallback_text, is_remote_url
from ..normalize import parse_arguments
from ..presets import OPENAI_COMPATIBLE, resolve_base_url
from ..types import (
    CanonicalMessage,
    ImagePart,
    LLMRequest,
    Part,
    RequestEnvelope,
    ResponseEnvelope,
    StreamChunk,
    TextPart,
    ToolCall,
    ToolCallDelta,
)

logger = logging.getLogger(__name__)


def apply_strict_schema(response_format: Dict[str, Any]) -> Dict[str, Any]:
    """
    Return a copy of an OpenAI response_format with strict mode enabled.

    Every object schema gets `additionalProperties: false`, as strict mode requires.
    """
    rf = copy.deepcopy(response_format)
    json_schema = rf.get("json_schema")
    if isinstance(json_schema, dict):
        json_schema["strict"] = True
        if isinstance(json_schema.get("schema"), dict):
            _inject_additional_properties(json_schema["schema"])
    return rf


def _inject_additional_properties(schema: Dict[str, Any]) -> None:
    if schema.get("type") == "object":
        schema.setdefault("additionalProperties", False)
    for prop in (schema.get("properties") or {}).values():
        if isinstance(prop, dict):
            _inject_additional_properties(prop)
    if isinstance(schema.get("items"), dict):
        _inject_additional_properties(schema["items"])


class OpenAICompatibleAdapter(BaseAdapter):
    """
    Adapter for OpenAI `chat/completions` and compatible servers (Grok, DeepSeek,
    Ollama, LM Studio, ...).

    Images are sent as `image_url` parts; video, audio and other files degrade to
    an `[Attachment: name (mime)]` text part.
    """

    api_format = OPENAI_COMPATIBLE
    capabilities = OPENAI_COMPATIBLE_CAPABILITIES

    async def build_request(self, request: LLMRequest, stream: bool = False) -> RequestEnvelope:
        base = resolve_base_url(self.api_format, request.base_url, request.provider)
        converted = await self.convert_messages(self.prepare_messages(request))
        opts = request.options

        body: Dict[str, Any] = {
            "model": request.model,
            "messages": converted,
            "stream": stream,
        }
        if opts.temperature is not None:
            body["temperature"] = opts.temperature
        if opts.max_tokens is not None:
            body["max_tokens"] = opts.max_tokens

        if opts.tools:
            body["tools"] = opts.tools
            body["tool_choice"] = opts.tool_choice or "auto"

        if opts.response_format:
            if model_capabilities(self.api_format, request.model).structured_output:
                body["response_format"] = apply_strict_schema(opts.response_format)
            else:
                logger.info("Model %s has no structured output; response_format dropped", request.model)

        return RequestEnvelope(
            endpoint=f"{base}/chat/completions",
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {request.api_key}",
            },
            body=body,
        )

    async def convert_messages(self, messages: List[CanonicalMessage]) -> List[Dict[str, Any]]:
        """
        Convert canonical messages to OpenAI's expected format.

        Handles:
        - Tool results (role "tool" with tool_call_id)
        - Assistant messages with tool calls (tool_calls with JSON-string arguments)
        - Multimodal content (text + images, other attachments as text)
        - Collapsing a single text part to a bare string

        Args:
            messages (List[CanonicalMessage]): Canonical message list.

        Returns:
            List[Dict]: OpenAI-compatible message list.
        """
        converted = []
        for msg in messages:
            content = await self._convert_content(msg.content)

            if msg.role == "tool":
                converted.append({
                    "role": "tool",
                    "tool_call_id": msg.tool_call_id or "",
                    "content": content,
                })
                continue

            if msg.role == "assistant" and msg.tool_calls:
                converted.append({
                    "role": "assistant",
                    "content": content if content else None,
                    "tool_calls": [
                        {
                            "id": tc.id,
                            "type": "function",
                            "function": {
                                "name": tc.name,
                                "arguments": json.dumps(tc.arguments),
                            },
                        }
                        for tc in msg.tool_calls
                    ],
                })
                continue

            converted.append({"role": msg.role, "content": content})

        return converted

    async def _convert_content(self, parts: List[Part]) -> Union[str, List[Dict[str, Any]]]:
        out: List[Dict[str, Any]] = []
        for part in parts:
            if isinstance(part, TextPart):
                out.append({"type": "text", "text": part.text})
                continue

            if isinstance(part, ImagePart):
                url = part.url
                if not url.startswith("data:") and not is_remote_url(url):
                    url = await self.read_media(url)
                if not url:
                    out.append({"type": "text", "text": fallback_text(part)})
                    continue
                out.append({"type": "image_url", "image_url": {"url": url}})
                continue

            # Video, audio, files: not supported, degrade to text
            logger.debug("Attachment %s (%s) sent as text reference", part.url, part.mime_type)
            out.append({"type": "text", "text": fallback_text(part)})

        if not out:
            return ""
        if len(out) == 1 and out[0]["type"] == "text":
            return out[0]["text"]
        return out

    def parse_response(self, data: Dict[str, Any]) -> ResponseEnvelope:
        message = self.error_message(data)
        if message:
            raise ProviderError(message, payload=data)

        choices = data.get("choices") or []
        choice = choices[0] if choices else {}
        msg = choice.get("message") or {}

        return ResponseEnvelope(
            content=msg.get("content") or "",
            tool_calls=self._parse_tool_calls(msg.get("tool_calls")),
            finish_reason=choice.get("finish_reason"),
            usage=self._usage(data.get("usage")),
            raw=data,
        )

    @staticmethod
    def _parse_tool_calls(raw_calls: Optional[List[Dict[str, Any]]]) -> Optional[List[ToolCall]]:
        """
        Parse tool calls from an OpenAI response message.

        Args:
            raw_calls: The `tool_calls` array of the message.

        Returns:
            Optional[List[ToolCall]]: Parsed tool calls, or None when there are none.
        """
        if not raw_calls:
            return None
        tool_calls = []
        for tc in raw_calls:
            function = tc.get("function") or {}
            tool_calls.append(ToolCall(
                id=tc.get("id") or "",
                name=function.get("name") or "",
                arguments=parse_arguments(function.get("arguments")),
            ))
        return tool_calls

    def _usage(self, usage: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if not usage:
            return None
        return self.normalize_usage(
            "openai_compatible",
            input_tokens=usage.get("prompt_tokens"),
            output_tokens=usage.get("completion_tokens"),
            total_tokens=usage.get("total_tokens"),
            raw=usage,
        )

    def parse_stream_chunk(self, payload: str) -> StreamChunk:
        # data: {"choices":[{"delta":{"content":"..."}}]}
        payload = payload.strip()
        if payload == "[DONE]":
            return StreamChunk(done=True)
        if not payload:
            return StreamChunk()

        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise ParseError(f"Invalid JSON in stream: {e.msg}") from e
        if not isinstance(data, dict):
            raise ParseError("Stream payload is not a JSON object")

        message = self.error_message(data)
        if message:
            return StreamChunk(done=True, error=message)

        choices = data.get("choices") or []
        usage = self._usage(data.get("usage"))
        if not choices:
            return StreamChunk(usage=usage)

        choice = choices[0]
        delta = choice.get("delta") or {}
        finish_reason = choice.get("finish_reason")

        delta_tool_calls = None
        if delta.get("tool_calls"):
            delta_tool_calls = []
            for i, tc in enumerate(delta["tool_calls"]):
                function = tc.get("function") or {}
                delta_tool_calls.append(ToolCallDelta(
                    index=tc.get("index", i),
                    id=tc.get("id"),
                    name=function.get("name"),
                    arguments_fragment=function.get("arguments") or "",
                ))

        return StreamChunk(
            delta_text=delta.get("content") or "",
            delta_tool_calls=delta_tool_calls,
            done=finish_reason is not None,
            finish_reason=finish_reason,
            usage=usage,
        )

    def models_request(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> RequestEnvelope:
        base = resolve_base_url(self.api_format, base_url, provider)
        return RequestEnvelope(
            endpoint=f"{base}/models",
            headers={"Authorization": f"Bearer {api_key}"},
            body={},
        )

    def parse_models(self, data: Dict[str, Any]) -> List[str]:
        return [m.get("id") for m in data.get("data") or [] if m.get("id")]
