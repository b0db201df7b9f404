import json
import logging
import uuid
from typing import Dict, Any, List, Optional, Set, Tuple

from .base import BaseAdapter
from ..capabilities import GEMINI_OFFICIAL_CAPABILITIES, model_capabilities
from ..errors import ParseError, ProviderError, SafetyBlockError
from ..media import attachment_name, fallback_text, is_remote_url, is_too_large, parse_data_uri
from ..presets import GEMINI_OFFICIAL, resolve_base_url
from ..tool_calls import has_continuation_token
from ..types import (
    CanonicalMessage,
    GeminiPartMetadata,
    LLMRequest,
    MediaPart,
    Part,
    RequestEnvelope,
    ResponseEnvelope,
    StreamChunk,
    TextPart,
    ToolCall,
    ToolCallDelta,
)

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.7

SAFETY_FINISH_REASONS = frozenset({
    "SAFETY",
    "RECITATION",
    "BLOCKLIST",
    "PROHIBITED_CONTENT",
    "SPII",
    "IMAGE_SAFETY",
})

TOOL_CHOICE_MODES = {
    "auto": "AUTO",
    "none": "NONE",
    "any": "ANY",
    "required": "ANY",
}

# Keys the Gemini schema dialect rejects
_UNSUPPORTED_SCHEMA_KEYS = ("additionalProperties", "$schema", "title")


# =============================================================================
# Schema / Tool Conversion
# =============================================================================

def convert_schema(schema: Any, keep_descriptions: bool = False) -> Any:
    """
    Convert a JSON Schema into Gemini's OpenAPI-style schema.

    Types are upper-cased (`"object"` -> `"OBJECT"`), a `["string", "null"]`
    union becomes `STRING` with `nullable: true`, and keys Gemini rejects are
    removed. Descriptions are dropped unless `keep_descriptions` is set.

    Args:
        schema: A JSON Schema fragment.
        keep_descriptions (bool): Keep `description` keys (tool parameters).

    Returns:
        The converted schema (a new object; the input is not modified).
    """
    if isinstance(schema, list):
        return [convert_schema(s, keep_descriptions) for s in schema]
    if not isinstance(schema, dict):
        return schema

    out: Dict[str, Any] = {}
    for key, value in schema.items():
        if key in _UNSUPPORTED_SCHEMA_KEYS:
            continue
        if key == "description" and not keep_descriptions:
            continue
        if key == "type":
            if isinstance(value, list):
                types = [t for t in value if t != "null"]
                if len(types) < len(value):
                    out["nullable"] = True
                value = types[0] if types else "string"
            out["type"] = str(value).upper()
        elif key == "properties" and isinstance(value, dict):
            out["properties"] = {
                name: convert_schema(prop, keep_descriptions) for name, prop in value.items()
            }
        elif isinstance(value, (dict, list)):
            out[key] = convert_schema(value, keep_descriptions)
        else:
            out[key] = value
    return out


def convert_tools(tools: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Convert tool declarations into Gemini function declarations.

    OpenAI-shaped entries (`{"type": "function", "function": {...}}`) are
    unwrapped; bare declarations pass through. Parameter schemas are cleaned
    of keys Gemini rejects.
    """
    declarations = []
    for tool in tools:
        if tool.get("type") == "function" and isinstance(tool.get("function"), dict):
            tool = tool["function"]
        declaration = {k: v for k, v in tool.items() if k != "parameters"}
        if tool.get("parameters"):
            declaration["parameters"] = convert_schema(tool["parameters"], keep_descriptions=True)
        declarations.append(declaration)
    return declarations


def _tool_response_payload(text: str) -> Dict[str, Any]:
    try:
        parsed = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return {"output": text}
    return parsed if isinstance(parsed, dict) else {"output": text}


# =============================================================================
# History Sanitization
# =============================================================================

def sanitize_history(messages: List[CanonicalMessage]) -> List[CanonicalMessage]:
    """
    Drop tool-calling turns Gemini would reject.

    Gemini requires every functionCall part to carry the thought signature it
    issued. Turns restored from storage have none, so an assistant turn with
    tool calls is kept only when it belongs to the active tool loop or still
    carries a signature. A tool result is kept when it is active or answers a
    call that was kept. The plain-text assistant turn that follows a finished
    loop already summarizes what was dropped.

    Args:
        messages (List[CanonicalMessage]): Canonical conversation.

    Returns:
        List[CanonicalMessage]: The filtered conversation (same message objects).
    """
    kept: List[CanonicalMessage] = []
    kept_call_ids: Set[str] = set()
    dropped = 0

    for msg in messages:
        if msg.tool_calls:
            if msg.active_tool_loop or has_continuation_token(msg):
                kept.append(msg)
                kept_call_ids.update(tc.id for tc in msg.tool_calls)
            else:
                dropped += 1
            continue

        if msg.role == "tool":
            if msg.active_tool_loop or (msg.tool_call_id and msg.tool_call_id in kept_call_ids):
                kept.append(msg)
            else:
                dropped += 1
            continue

        kept.append(msg)

    if dropped:
        logger.info("Dropped %d historical tool message(s) without thought signatures", dropped)
    return kept


class GeminiOfficialAdapter(BaseAdapter):
    """
    Adapter for the Gemini REST API (`generateContent` / `streamGenerateContent`).

    Media is sent inline as base64 `inline_data` up to 20MB. The API key travels
    in the query string, never in a header.
    """

    api_format = GEMINI_OFFICIAL
    capabilities = GEMINI_OFFICIAL_CAPABILITIES

    async def build_request(self, request: LLMRequest, stream: bool = False) -> RequestEnvelope:
        base = resolve_base_url(self.api_format, request.base_url, request.provider)
        messages = sanitize_history(self.prepare_messages(request))
        system_instruction, contents = await self.convert_messages(messages)
        opts = request.options
        caps = model_capabilities(self.api_format, request.model)

        generation_config: Dict[str, Any] = {
            "temperature": opts.temperature if opts.temperature is not None else DEFAULT_TEMPERATURE,
        }
        if opts.max_tokens is not None:
            generation_config["maxOutputTokens"] = opts.max_tokens

        if opts.response_format and caps.structured_output:
            generation_config["responseMimeType"] = "application/json"
            json_schema = opts.response_format.get("json_schema") or {}
            if isinstance(json_schema.get("schema"), dict):
                generation_config["responseSchema"] = convert_schema(json_schema["schema"])

        body: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": generation_config,
        }
        if system_instruction:
            body["system_instruction"] = {"parts": [{"text": system_instruction}]}

        tools: List[Dict[str, Any]] = []
        if opts.tools:
            tools.append({"function_declarations": convert_tools(opts.tools)})
            if opts.tool_choice:
                mode = TOOL_CHOICE_MODES.get(opts.tool_choice.lower(), "AUTO")
                body["tool_config"] = {"function_calling_config": {"mode": mode}}

        if opts.enable_search:
            if caps.native_search:
                tools.append({"google_search": {}})
            else:
                logger.info("Native search grounding is off for %s; no search tool added", request.model)

        if tools:
            body["tools"] = tools

        model = request.model
        if model.startswith("models/"):
            model = model[len("models/"):]
        if stream:
            endpoint = f"{base}/models/{model}:streamGenerateContent?alt=sse&key={request.api_key}"
        else:
            endpoint = f"{base}/models/{model}:generateContent?key={request.api_key}"

        return RequestEnvelope(
            endpoint=endpoint,
            headers={"Content-Type": "application/json"},
            body=body,
        )

    async def convert_messages(
        self, messages: List[CanonicalMessage]
    ) -> Tuple[Optional[str], List[Dict[str, Any]]]:
        """
        Convert canonical messages to Gemini `contents`.

        Handles:
        - System messages (joined into one system instruction)
        - Role mapping (assistant -> model)
        - Assistant tool calls (raw parts echoed back with their signatures)
        - Tool results (consecutive results merged into one user turn)

        Args:
            messages (List[CanonicalMessage]): Sanitized canonical messages.

        Returns:
            Tuple[Optional[str], List[Dict]]: (system_instruction, contents)
        """
        system_texts: List[str] = []
        contents: List[Dict[str, Any]] = []
        call_names: Dict[str, str] = {}
        merging_results = False

        for msg in messages:
            if msg.role == "system":
                system_texts.extend(p.text for p in msg.content if isinstance(p, TextPart))
                continue

            if msg.role == "tool":
                parts = await self._tool_result_parts(msg, call_names)
                if merging_results and contents:
                    contents[-1]["parts"].extend(parts)
                else:
                    contents.append({"role": "user", "parts": parts})
                merging_results = True
                continue
            merging_results = False

            parts = await self._convert_parts(msg.content)

            if msg.role == "assistant" and msg.tool_calls:
                for tc in msg.tool_calls:
                    call_names[tc.id] = tc.name
                    if isinstance(tc.provider_metadata, GeminiPartMetadata):
                        parts.append(tc.provider_metadata.part)
                    else:
                        parts.append({"functionCall": {"name": tc.name, "args": tc.arguments}})

            if not parts:
                continue
            contents.append({
                "role": "model" if msg.role == "assistant" else "user",
                "parts": parts,
            })

        system_instruction = "\n".join(system_texts) if system_texts else None
        return system_instruction, contents

    async def _tool_result_parts(
        self, msg: CanonicalMessage, call_names: Dict[str, str]
    ) -> List[Dict[str, Any]]:
        text = "\n".join(p.text for p in msg.content if isinstance(p, TextPart))
        name = msg.name or call_names.get(msg.tool_call_id or "", "") or "tool"
        parts: List[Dict[str, Any]] = [{
            "functionResponse": {
                "name": name,
                "response": _tool_response_payload(text),
            }
        }]
        # Images returned by the tool follow the response
        media = [p for p in msg.content if not isinstance(p, TextPart)]
        parts.extend(await self._convert_parts(media))
        return parts

    async def _convert_parts(self, content: List[Part]) -> List[Dict[str, Any]]:
        parts = []
        for part in content:
            if isinstance(part, TextPart):
                parts.append({"text": part.text})
            else:
                parts.append(await self._convert_media(part))
        return parts

    async def _convert_media(self, part: MediaPart) -> Dict[str, Any]:
        """
        Convert one attachment to an `inline_data` part, or a text fallback when
        it is unsupported, unreadable, remote or larger than 20MB.
        """
        if not self.capabilities.accepts(part.mime_type):
            logger.debug("Gemini cannot ingest %s; sending text reference", part.mime_type)
            return {"text": fallback_text(part)}

        url = part.url
        if is_remote_url(url):
            # inline_data cannot reference a bare URL
            return {"text": fallback_text(part)}
        if not url.startswith("data:"):
            url = await self.read_media(url)

        parsed = parse_data_uri(url)
        if not parsed:
            return {"text": fallback_text(part)}

        mime_type, data = parsed
        if is_too_large(data, self.capabilities.max_inline_bytes):
            logger.warning("Attachment %s exceeds the inline size limit", attachment_name(part))
            return {"text": f"[File too large: {attachment_name(part)}]"}

        return {"inline_data": {"mime_type": part.mime_type or mime_type, "data": data}}

    # =============================================================================
    # Response Parsing
    # =============================================================================

    @staticmethod
    def block_reason(data: Dict[str, Any]) -> Optional[str]:
        """
        The safety block reason of a response, or None when it was not blocked.
        """
        feedback = data.get("promptFeedback") or {}
        if feedback.get("blockReason"):
            return feedback["blockReason"]
        candidates = data.get("candidates") or []
        if candidates:
            finish_reason = candidates[0].get("finishReason")
            if finish_reason in SAFETY_FINISH_REASONS:
                return finish_reason
        return None

    @staticmethod
    def _candidate_parts(data: Dict[str, Any]) -> List[Dict[str, Any]]:
        candidates = data.get("candidates") or []
        if not candidates:
            return []
        content = candidates[0].get("content") or {}
        return content.get("parts") or []

    @staticmethod
    def _text(parts: List[Dict[str, Any]]) -> str:
        # Thought summaries are not part of the answer
        return "".join(p["text"] for p in parts if "text" in p and not p.get("thought"))

    @staticmethod
    def _call_id(function_call: Dict[str, Any], index: int) -> str:
        return function_call.get("id") or f"call_{index}_{uuid.uuid4().hex[:8]}"

    def _usage(self, usage: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if not usage:
            return None
        return self.normalize_usage(
            "gemini_official",
            input_tokens=usage.get("promptTokenCount"),
            output_tokens=usage.get("candidatesTokenCount"),
            total_tokens=usage.get("totalTokenCount"),
            raw=usage,
        )

    def parse_response(self, data: Dict[str, Any]) -> ResponseEnvelope:
        message = self.error_message(data)
        if message:
            raise ProviderError(message, payload=data)

        reason = self.block_reason(data)
        if reason:
            raise SafetyBlockError(reason)

        parts = self._candidate_parts(data)
        tool_calls = []
        for part in parts:
            if "functionCall" in part:
                fc = part["functionCall"]
                tool_calls.append(ToolCall(
                    id=self._call_id(fc, len(tool_calls)),
                    name=fc.get("name") or "",
                    arguments=fc.get("args") or {},
                    provider_metadata=GeminiPartMetadata(part),
                ))

        candidates = data.get("candidates") or []
        return ResponseEnvelope(
            content=self._text(parts),
            tool_calls=tool_calls or None,
            finish_reason=candidates[0].get("finishReason") if candidates else None,
            usage=self._usage(data.get("usageMetadata")),
            raw=data,
        )

    def parse_stream_chunk(self, payload: str) -> StreamChunk:
        payload = payload.strip()
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

        reason = self.block_reason(data)
        if reason:
            return StreamChunk(
                done=True,
                blocked=True,
                error=str(SafetyBlockError(reason)),
                finish_reason=reason,
            )

        usage = self._usage(data.get("usageMetadata"))
        candidates = data.get("candidates") or []
        if not candidates:
            # Trailing usage-only object
            return StreamChunk(done=usage is not None, usage=usage)

        parts = self._candidate_parts(data)
        deltas = []
        for part in parts:
            if "functionCall" in part:
                fc = part["functionCall"]
                deltas.append(ToolCallDelta(
                    index=len(deltas),
                    id=self._call_id(fc, len(deltas)),
                    name=fc.get("name") or "",
                    arguments=fc.get("args") or {},
                    provider_metadata=GeminiPartMetadata(part),
                ))

        finish_reason = candidates[0].get("finishReason")
        return StreamChunk(
            delta_text=self._text(parts),
            delta_tool_calls=deltas or None,
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
        return RequestEnvelope(endpoint=f"{base}/models?key={api_key}", headers={}, body={})

    def parse_models(self, data: Dict[str, Any]) -> List[str]:
        models = []
        for m in data.get("models") or []:
            if "generateContent" not in (m.get("supportedGenerationMethods") or []):
                continue
            name = m.get("name") or ""
            models.append(name[len("models/"):] if name.startswith("models/") else name)
        return models
