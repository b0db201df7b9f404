"""
Static capability tables.

`CapabilityDescriptor` says which attachment kinds an adapter's provider can
ingest inline; `model_capabilities` answers per-model questions (structured
output, native search grounding) from one explicit table.
"""

import fnmatch
from dataclasses import dataclass
from typing import Optional, Tuple

MAX_INLINE_BYTES = 20 * 1024 * 1024  # 20MB


@dataclass(frozen=True)
class CapabilityDescriptor:
    supports_image: bool
    supports_video: bool
    supports_audio: bool
    supports_pdf: bool
    supports_docx: bool
    supports_inline_data: bool
    max_inline_bytes: int = MAX_INLINE_BYTES
    inline_text_mimes: Tuple[str, ...] = ()

    def accepts(self, mime_type: Optional[str]) -> bool:
        """
        Whether an attachment of this MIME type can be sent natively.
        """
        if not mime_type:
            return False
        if mime_type.startswith("image/"):
            return self.supports_image
        if mime_type.startswith("video/"):
            return self.supports_video
        if mime_type.startswith("audio/"):
            return self.supports_audio
        if mime_type == "application/pdf":
            return self.supports_pdf
        if "wordprocessingml" in mime_type or mime_type == "application/msword":
            return self.supports_docx
        return mime_type in self.inline_text_mimes


OPENAI_COMPATIBLE_CAPABILITIES = CapabilityDescriptor(
    supports_image=True,
    supports_video=False,
    supports_audio=False,
    supports_pdf=False,
    supports_docx=False,
    supports_inline_data=True,
)

GEMINI_OFFICIAL_CAPABILITIES = CapabilityDescriptor(
    supports_image=True,
    supports_video=True,
    supports_audio=True,
    supports_pdf=True,
    supports_docx=False,
    supports_inline_data=True,
    inline_text_mimes=("text/plain", "text/csv"),
)


# =============================================================================
# Per-model capabilities
# =============================================================================

@dataclass(frozen=True)
class ModelCapabilities:
    structured_output: bool = True
    native_search: bool = False


DEFAULT_MODEL_CAPABILITIES = ModelCapabilities()

# (api_format, model glob) -> capabilities. First match wins.
MODEL_CAPABILITIES: Tuple[Tuple[str, str, ModelCapabilities], ...] = (
    ("openai_compatible", "gpt-3.5-turbo*", ModelCapabilities(structured_output=False)),
    ("openai_compatible", "gpt-4-turbo*", ModelCapabilities(structured_output=False)),
    ("openai_compatible", "grok-2-latest", ModelCapabilities(structured_output=False)),
    ("openai_compatible", "grok-2-1212", ModelCapabilities(structured_output=False)),
    ("openai_compatible", "grok-vision-beta", ModelCapabilities(structured_output=False)),
    ("openai_compatible", "claude-3-7-sonnet-*", ModelCapabilities(structured_output=False)),
    ("openai_compatible", "deepseek-r1*", ModelCapabilities(structured_output=False)),
    ("openai_compatible", "*gemma3-abliterated*", ModelCapabilities(structured_output=False)),
    # Native Google Search grounding varies by model; off until verified per model.
    ("gemini_official", "*", ModelCapabilities(structured_output=True, native_search=False)),
)


def model_capabilities(api_format: str, model: str) -> ModelCapabilities:
    """
    Look up what a given model supports.

    Args:
        api_format (str): 'openai_compatible' or 'gemini_official'.
        model (str): Model identifier (a leading 'models/' is ignored).

    Returns:
        ModelCapabilities: The first matching entry, or the defaults.
    """
    name = (model or "").lower()
    if name.startswith("models/"):
        name = name[len("models/"):]
    for fmt, pattern, caps in MODEL_CAPABILITIES:
        if fmt == api_format and fnmatch.fnmatchcase(name, pattern):
            return caps
    return DEFAULT_MODEL_CAPABILITIES
