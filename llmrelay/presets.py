"""
API base URL presets and resolution.

These are direct endpoints of official or local services.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

OPENAI_COMPATIBLE = "openai_compatible"
GEMINI_OFFICIAL = "gemini_official"

DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


@dataclass(frozen=True)
class Preset:
    id: str
    label: str
    base_url: str
    notes: str = ""
    is_local: bool = False


OPENAI_COMPATIBLE_PRESETS: Tuple[Preset, ...] = (
    Preset("openai", "OpenAI", "https://api.openai.com/v1", "Official OpenAI API"),
    Preset("deepseek", "DeepSeek", "https://api.deepseek.com/v1", "DeepSeek API"),
    Preset("anthropic", "Anthropic", "https://api.anthropic.com/v1", "Claude models (OpenAI-compatible endpoint)"),
    Preset("groq", "Groq", "https://api.groq.com/openai/v1", "Groq fast inference"),
    Preset("xai", "xAI (Grok)", "https://api.x.ai/v1", "xAI Grok models"),
    Preset("openrouter", "OpenRouter", "https://openrouter.ai/api/v1", "Multi-provider gateway"),
    Preset("together", "Together AI", "https://api.together.xyz/v1", "Together AI inference"),
    Preset("ollama", "Ollama (Local)", "http://localhost:11434/v1", "Local Ollama server", is_local=True),
    Preset("lmstudio", "LM Studio (Local)", "http://localhost:1234/v1", "Local LM Studio server", is_local=True),
    Preset("custom", "Custom URL", "", "Enter your own endpoint"),
)

GEMINI_OFFICIAL_PRESETS: Tuple[Preset, ...] = (
    Preset("google", "Google AI (Official)", "https://generativelanguage.googleapis.com", "Official Google Gemini API"),
    Preset("custom", "Custom URL", "", "Enter your own endpoint (e.g., proxy)"),
)

# Default OpenAI-compatible base URL per provider key
PROVIDER_URLS = {
    "openai": "https://api.openai.com/v1",
    "gemini": "https://generativelanguage.googleapis.com/v1beta/openai",
    "anthropic": "https://api.anthropic.com/v1",
    "grok": "https://api.x.ai/v1",
    "xai": "https://api.x.ai/v1",
    "deepseek": "https://api.deepseek.com/v1",
    "groq": "https://api.groq.com/openai/v1",
    "openrouter": "https://openrouter.ai/api/v1",
    "together": "https://api.together.xyz/v1",
    "ollama": "http://localhost:11434/v1",
    "lmstudio": "http://localhost:1234/v1",
}


def presets_for_format(api_format: str) -> Tuple[Preset, ...]:
    if api_format == GEMINI_OFFICIAL:
        return GEMINI_OFFICIAL_PRESETS
    return OPENAI_COMPATIBLE_PRESETS


def default_base_url(api_format: str, provider: Optional[str] = None) -> str:
    if api_format == GEMINI_OFFICIAL:
        return DEFAULT_GEMINI_BASE_URL
    return PROVIDER_URLS.get(provider or "openai", DEFAULT_OPENAI_BASE_URL)


def find_preset_by_url(api_format: str, url: Optional[str]) -> str:
    """Return the id of the preset whose base URL matches `url`, else 'custom'."""
    normalized = (url or "").rstrip("/")
    for preset in presets_for_format(api_format):
        if preset.base_url and preset.base_url.rstrip("/") == normalized:
            return preset.id
    return "custom"


def detection_candidates(include_local: bool = False) -> List[Preset]:
    """OpenAI-compatible presets worth probing when auto-detecting an endpoint."""
    return [
        p for p in OPENAI_COMPATIBLE_PRESETS
        if p.id != "custom" and (include_local or not p.is_local)
    ]


def resolve_base_url(
    api_format: str,
    base_url: Optional[str] = None,
    provider: Optional[str] = None,
) -> str:
    """
    Resolve the versioned API base URL for a request.

    Without an override (or with the literal 'default') the per-format default is
    used. An override gets '/v1' ('/v1beta' for Gemini) appended unless it already
    ends with a version segment. Trailing slashes are removed, so the result never
    produces a doubled slash or version segment.

    Args:
        api_format (str): 'openai_compatible' or 'gemini_official'.
        base_url (str, optional): User-supplied base URL.
        provider (str, optional): Preset key for the OpenAI-compatible default.

    Returns:
        str: Base URL without a trailing slash.
    """
    if not base_url or base_url == "default":
        return default_base_url(api_format, provider)

    url = base_url.strip().rstrip("/")
    if api_format == GEMINI_OFFICIAL:
        if not url.endswith(("/v1beta", "/v1")):
            url = f"{url}/v1beta"
    elif not url.endswith("/v1"):
        url = f"{url}/v1"
    return url
