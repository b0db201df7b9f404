import pytest

from llmrelay.capabilities import (
    GEMINI_OFFICIAL_CAPABILITIES,
    OPENAI_COMPATIBLE_CAPABILITIES,
    model_capabilities,
)
from llmrelay.presets import (
    default_base_url,
    detection_candidates,
    find_preset_by_url,
    resolve_base_url,
)


class TestResolveBaseUrl:

    @pytest.mark.parametrize("base_url,expected", [
        (None, "https://api.openai.com/v1"),
        ("default", "https://api.openai.com/v1"),
        ("https://host.com", "https://host.com/v1"),
        ("https://host.com/", "https://host.com/v1"),
        ("https://host.com/v1", "https://host.com/v1"),
        ("https://host.com/v1/", "https://host.com/v1"),
    ])
    def test_openai_compatible(self, base_url, expected):
        assert resolve_base_url("openai_compatible", base_url) == expected

    @pytest.mark.parametrize("base_url,expected", [
        (None, "https://generativelanguage.googleapis.com/v1beta"),
        ("https://proxy.example.com", "https://proxy.example.com/v1beta"),
        ("https://proxy.example.com/v1beta/", "https://proxy.example.com/v1beta"),
        ("https://proxy.example.com/v1", "https://proxy.example.com/v1"),
    ])
    def test_gemini(self, base_url, expected):
        assert resolve_base_url("gemini_official", base_url) == expected

    def test_provider_default(self):
        assert resolve_base_url("openai_compatible", provider="groq") == "https://api.groq.com/openai/v1"
        assert default_base_url("openai_compatible", "unknown") == "https://api.openai.com/v1"


class TestPresetLookup:

    def test_find_preset_by_url(self):
        assert find_preset_by_url("openai_compatible", "https://api.deepseek.com/v1/") == "deepseek"
        assert find_preset_by_url("gemini_official", "https://generativelanguage.googleapis.com") == "google"
        assert find_preset_by_url("openai_compatible", "https://my-proxy.local") == "custom"
        assert find_preset_by_url("openai_compatible", None) == "custom"

    def test_detection_candidates(self):
        ids = [p.id for p in detection_candidates()]
        assert "openai" in ids
        assert "custom" not in ids
        assert "ollama" not in ids
        assert "ollama" in [p.id for p in detection_candidates(include_local=True)]


class TestCapabilities:

    def test_descriptors(self):
        assert OPENAI_COMPATIBLE_CAPABILITIES.accepts("image/png")
        assert not OPENAI_COMPATIBLE_CAPABILITIES.accepts("application/pdf")
        assert GEMINI_OFFICIAL_CAPABILITIES.accepts("application/pdf")
        assert GEMINI_OFFICIAL_CAPABILITIES.accepts("audio/mpeg")
        assert GEMINI_OFFICIAL_CAPABILITIES.accepts("text/plain")
        assert not GEMINI_OFFICIAL_CAPABILITIES.accepts(
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
        )
        assert not GEMINI_OFFICIAL_CAPABILITIES.accepts(None)

    @pytest.mark.parametrize("model,structured", [
        ("gpt-4o-mini", True),
        ("gpt-3.5-turbo-0125", False),
        ("deepseek-r1-distill", False),
        ("claude-3-7-sonnet-20250219", False),
        ("grok-2-latest", False),
    ])
    def test_structured_output(self, model, structured):
        assert model_capabilities("openai_compatible", model).structured_output is structured

    def test_gemini_models(self):
        caps = model_capabilities("gemini_official", "models/gemini-2.5-flash")
        assert caps.structured_output
        assert not caps.native_search
