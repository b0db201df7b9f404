import pytest

from llmrelay.tool_calls import (
    ToolLoop,
    assistant_tool_call_message,
    has_continuation_token,
    strip_provider_metadata,
    summarize_tool_calls,
    tool_result_message,
)
from llmrelay.types import (
    CanonicalMessage,
    GeminiPartMetadata,
    ImagePart,
    ResponseEnvelope,
    TextPart,
    ToolCall,
)

SIGNED_PART = {"functionCall": {"name": "get_weather", "args": {"city": "Paris"}}, "thoughtSignature": "c2ln"}


def _signed_call():
    return ToolCall(
        id="call_1",
        name="get_weather",
        arguments={"city": "Paris"},
        provider_metadata=GeminiPartMetadata(SIGNED_PART),
    )


class TestMessages:

    def test_assistant_tool_call_message(self):
        msg = assistant_tool_call_message("Let me check.", [_signed_call()])
        assert msg.role == "assistant"
        assert msg.content == [TextPart("Let me check.")]
        assert msg.active_tool_loop
        assert msg.tool_calls[0].provider_metadata.part == SIGNED_PART

    def test_assistant_message_without_text(self):
        assert assistant_tool_call_message(None, [_signed_call()]).content == []

    def test_tool_result_json_encodes(self):
        msg = tool_result_message(_signed_call(), {"temp": 18, "unit": "C"})
        assert msg.role == "tool"
        assert msg.tool_call_id == "call_1"
        assert msg.name == "get_weather"
        assert msg.content == [TextPart('{"temp": 18, "unit": "C"}')]

    def test_tool_result_images(self):
        msg = tool_result_message(
            _signed_call(),
            "chart attached",
            images=[
                {"data": "iVBORw0KGgo=", "mime_type": "image/jpeg"},
                {"data": "iVBORw0KGgo="},
                "https://example.com/chart.png",
                "data:image/webp;base64,UklGRg==",
            ],
        )
        assert msg.content[1:] == [
            ImagePart(url="data:image/jpeg;base64,iVBORw0KGgo=", mime_type="image/jpeg"),
            ImagePart(url="data:image/png;base64,iVBORw0KGgo=", mime_type="image/png"),
            ImagePart(url="https://example.com/chart.png", mime_type="image/png"),
            ImagePart(url="data:image/webp;base64,UklGRg==", mime_type="image/webp"),
        ]


class TestProviderMetadata:

    def test_has_continuation_token(self):
        assert has_continuation_token(assistant_tool_call_message("", [_signed_call()]))
        unsigned = ToolCall(id="c", name="x", provider_metadata=GeminiPartMetadata({"functionCall": {"name": "x"}}))
        assert not has_continuation_token(assistant_tool_call_message("", [unsigned]))
        assert not has_continuation_token(CanonicalMessage(role="user", content=[TextPart("hi")]))

    def test_strip_does_not_modify_input(self):
        original = assistant_tool_call_message("", [_signed_call()])

        stripped = strip_provider_metadata([original])

        assert stripped[0].tool_calls[0].provider_metadata is None
        assert not stripped[0].active_tool_loop
        assert original.tool_calls[0].provider_metadata is not None
        assert original.active_tool_loop

    def test_summarize(self):
        calls = [_signed_call(), ToolCall(id="c2", name="now")]
        assert summarize_tool_calls(calls) == 'Used tools: get_weather(city="Paris"), now()'
        assert summarize_tool_calls([]) == ""


class TestToolLoop:

    def test_round_trip(self):
        history = [{"role": "user", "content": "Weather in Paris?"}]
        loop = ToolLoop(history)
        call = _signed_call()

        loop.add_response(ResponseEnvelope(content="", tool_calls=[call]))
        loop.add_result(call, {"temp": 18})

        sent = loop.messages()
        assert len(sent) == 3
        assert sent[1].active_tool_loop and sent[2].active_tool_loop
        assert sent[1].tool_calls[0].provider_metadata.has_signature
        assert loop.rounds == 1

        persisted = loop.close("It is 18C.")

        assert [m["role"] if isinstance(m, dict) else m.role for m in persisted] == [
            "user", "assistant", "tool", "assistant",
        ]
        assert persisted[1].tool_calls[0].provider_metadata is None
        assert not any(getattr(m, "active_tool_loop", False) for m in persisted)
        assert persisted[-1].content == [TextPart("It is 18C.")]
        assert loop.active == []
        assert history == [{"role": "user", "content": "Weather in Paris?"}]

    def test_add_response_requires_tool_calls(self):
        with pytest.raises(ValueError):
            ToolLoop([]).add_response(ResponseEnvelope(content="plain answer"))
