import json

import pytest

from llmrelay.errors import ParseError, ProviderError
from llmrelay.providers.openai import OpenAICompatibleAdapter, apply_strict_schema
from llmrelay.types import AudioPart, CanonicalMessage, FilePart, ImagePart, TextPart, ToolCall, VideoPart

WEATHER_TOOL = {
    "type": "function",
    "function": {
        "name": "get_weather",
        "description": "Weather for a city",
        "parameters": {"type": "object", "properties": {"city": {"type": "string"}}},
    },
}


@pytest.fixture
def adapter(file_reader):
    return OpenAICompatibleAdapter(file_reader)


class TestBuildRequest:

    @pytest.mark.asyncio
    async def test_minimal_body(self, adapter, make_request):
        envelope = await adapter.build_request(make_request(), stream=False)

        assert envelope.body == {
            "model": "gpt-4o-mini",
            "messages": [{"role": "user", "content": "Hi"}],
            "stream": False,
        }
        assert envelope.endpoint == "https://api.openai.com/v1/chat/completions"
        assert envelope.headers["Authorization"] == "Bearer test-key"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("base_url", ["https://host.com", "https://host.com/", "https://host.com/v1/"])
    async def test_base_url_override(self, adapter, make_request, base_url):
        envelope = await adapter.build_request(make_request(base_url=base_url))
        assert envelope.endpoint == "https://host.com/v1/chat/completions"

    @pytest.mark.asyncio
    async def test_options(self, adapter, make_request):
        envelope = await adapter.build_request(
            make_request(temperature=0.2, max_tokens=50, tools=[WEATHER_TOOL]), stream=True
        )
        body = envelope.body
        assert body["stream"] is True
        assert body["temperature"] == 0.2
        assert body["max_tokens"] == 50
        assert body["tools"] == [WEATHER_TOOL]
        assert body["tool_choice"] == "auto"

    @pytest.mark.asyncio
    async def test_explicit_tool_choice(self, adapter, make_request):
        envelope = await adapter.build_request(make_request(tools=[WEATHER_TOOL], tool_choice="required"))
        assert envelope.body["tool_choice"] == "required"

    @pytest.mark.asyncio
    async def test_response_format_strict(self, adapter, make_request):
        response_format = {
            "type": "json_schema",
            "json_schema": {"name": "answer", "schema": {"type": "object", "properties": {"a": {"type": "string"}}}},
        }
        envelope = await adapter.build_request(make_request(response_format=response_format))

        sent = envelope.body["response_format"]
        assert sent["json_schema"]["strict"] is True
        assert sent["json_schema"]["schema"]["additionalProperties"] is False
        assert "strict" not in response_format["json_schema"]

    @pytest.mark.asyncio
    async def test_response_format_dropped_without_structured_output(self, adapter, make_request):
        envelope = await adapter.build_request(
            make_request(model="gpt-3.5-turbo", response_format={"type": "json_object"})
        )
        assert "response_format" not in envelope.body


class TestConvertMessages:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("part", [
        VideoPart(url="/uploads/clip.mp4", mime_type="video/mp4", name="clip.mp4"),
        AudioPart(url="/uploads/memo.mp3", mime_type="audio/mpeg", name="memo.mp3"),
        FilePart(url="/uploads/r.pdf", mime_type="application/pdf", name="r.pdf"),
    ])
    async def test_unsupported_media_becomes_text(self, adapter, part):
        converted = await adapter.convert_messages([CanonicalMessage(role="user", content=[part])])
        assert converted == [{"role": "user", "content": f"[Attachment: {part.name} ({part.mime_type})]"}]

    @pytest.mark.asyncio
    async def test_local_image_is_read(self, adapter, file_reader):
        converted = await adapter.convert_messages([CanonicalMessage(
            role="user",
            content=[TextPart("What is this?"), ImagePart(url="/uploads/cat.png", mime_type="image/png")],
        )])

        assert converted[0]["content"] == [
            {"type": "text", "text": "What is this?"},
            {"type": "image_url", "image_url": {"url": "data:image/png;base64,iVBORw0KGgo="}},
        ]
        file_reader.read.assert_awaited_once_with("/uploads/cat.png")

    @pytest.mark.asyncio
    async def test_remote_image_passes_through(self, adapter, file_reader):
        url = "https://example.com/cat.jpg"
        converted = await adapter.convert_messages(
            [CanonicalMessage(role="user", content=[TextPart("x"), ImagePart(url=url, mime_type="image/jpeg")])]
        )
        assert converted[0]["content"][1] == {"type": "image_url", "image_url": {"url": url}}
        file_reader.read.assert_not_called()

    @pytest.mark.asyncio
    async def test_unreadable_image_falls_back(self, adapter, file_reader):
        file_reader.read.return_value = None
        converted = await adapter.convert_messages(
            [CanonicalMessage(role="user", content=[ImagePart(url="/uploads/gone.png", mime_type="image/png")])]
        )
        assert converted[0]["content"] == "[Attachment: gone.png (image/png)]"

    @pytest.mark.asyncio
    async def test_empty_content(self, adapter):
        converted = await adapter.convert_messages([CanonicalMessage(role="user", content=[])])
        assert converted == [{"role": "user", "content": ""}]

    @pytest.mark.asyncio
    async def test_tool_round_trip(self, adapter):
        call = ToolCall(id="call_1", name="get_weather", arguments={"city": "Paris"})
        converted = await adapter.convert_messages([
            CanonicalMessage(role="assistant", content=[], tool_calls=[call]),
            CanonicalMessage(role="tool", content=[TextPart('{"temp": 18}')], tool_call_id="call_1", name="get_weather"),
        ])

        assert converted[0] == {
            "role": "assistant",
            "content": None,
            "tool_calls": [{
                "id": "call_1",
                "type": "function",
                "function": {"name": "get_weather", "arguments": json.dumps({"city": "Paris"})},
            }],
        }
        assert converted[1] == {"role": "tool", "tool_call_id": "call_1", "content": '{"temp": 18}'}


class TestParseResponse:

    def test_example_response(self, adapter):
        result = adapter.parse_response({"choices": [{"message": {"content": "Hello!"}}]})
        assert result.content == "Hello!"
        assert result.tool_calls is None

    def test_tool_calls_and_usage(self, adapter):
        result = adapter.parse_response({
            "choices": [{
                "message": {
                    "content": None,
                    "tool_calls": [
                        {"id": "c1", "function": {"name": "get_weather", "arguments": '{"city": "Oslo"}'}},
                        {"id": "c2", "function": {"name": "broken", "arguments": "{oops"}},
                    ],
                },
                "finish_reason": "tool_calls",
            }],
            "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
        })

        assert result.content == ""
        assert result.tool_calls == [
            ToolCall(id="c1", name="get_weather", arguments={"city": "Oslo"}),
            ToolCall(id="c2", name="broken", arguments={"_raw": "{oops"}),
        ]
        assert result.finish_reason == "tool_calls"
        assert result.usage["total_tokens"] == 15
        assert result.usage["raw"]["provider"] == "openai_compatible"

    def test_error_payload_raises(self, adapter):
        with pytest.raises(ProviderError, match="Invalid API key"):
            adapter.parse_response({"error": {"message": "Invalid API key", "type": "auth"}})


class TestParseStreamChunk:

    def test_done_marker(self, adapter):
        assert adapter.parse_stream_chunk("[DONE]").done

    def test_content_delta(self, adapter):
        chunk = adapter.parse_stream_chunk(json.dumps({"choices": [{"delta": {"content": "He"}, "finish_reason": None}]}))
        assert chunk.delta_text == "He"
        assert not chunk.done

    def test_finish_reason_ends(self, adapter):
        chunk = adapter.parse_stream_chunk(json.dumps({"choices": [{"delta": {}, "finish_reason": "stop"}]}))
        assert chunk.done
        assert chunk.finish_reason == "stop"

    def test_tool_call_fragments(self, adapter):
        chunk = adapter.parse_stream_chunk(json.dumps({"choices": [{"delta": {"tool_calls": [
            {"index": 0, "id": "c1", "function": {"name": "get_weather", "arguments": '{"ci'}},
        ]}}]}))
        delta = chunk.delta_tool_calls[0]
        assert (delta.index, delta.id, delta.name, delta.arguments_fragment) == (0, "c1", "get_weather", '{"ci')
        assert delta.arguments is None

    def test_invalid_json_raises_parse_error(self, adapter):
        with pytest.raises(ParseError):
            adapter.parse_stream_chunk('{"choices": [')

    def test_error_object_is_terminal(self, adapter):
        chunk = adapter.parse_stream_chunk(json.dumps({"error": {"message": "overloaded"}}))
        assert chunk.done
        assert chunk.error == "overloaded"


class TestModels:

    def test_models_request(self, adapter):
        envelope = adapter.models_request("k", provider="deepseek")
        assert envelope.endpoint == "https://api.deepseek.com/v1/models"
        assert envelope.headers == {"Authorization": "Bearer k"}

    def test_parse_models(self, adapter):
        assert adapter.parse_models({"data": [{"id": "gpt-4o"}, {"id": "gpt-4o-mini"}, {}]}) == ["gpt-4o", "gpt-4o-mini"]


def test_apply_strict_schema_nested():
    rf = apply_strict_schema({
        "type": "json_schema",
        "json_schema": {
            "name": "x",
            "schema": {
                "type": "object",
                "properties": {"items": {"type": "array", "items": {"type": "object", "properties": {}}}},
            },
        },
    })
    schema = rf["json_schema"]["schema"]
    assert schema["properties"]["items"]["items"]["additionalProperties"] is False
