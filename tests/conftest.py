import json
from typing import Any, Callable, Dict, List

import httpx
import pytest
from unittest.mock import AsyncMock

from llmrelay.client import LLMDispatcher
from llmrelay.config import Settings
from llmrelay.types import CallOptions, LLMRequest


@pytest.fixture
def mock_env(monkeypatch):
    """Mock environment variables for API keys and settings."""
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-openai")
    monkeypatch.setenv("GOOGLE_API_KEY", "AIza-test-google")
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.setenv("LLMRELAY_UPLOAD_DIR", "/tmp/llmrelay-uploads")
    monkeypatch.setenv("LLMRELAY_TIMEOUT", "30")


@pytest.fixture
def file_reader():
    """File reader that resolves every local path to a small PNG data URI."""
    reader = AsyncMock()
    reader.read.return_value = "data:image/png;base64,iVBORw0KGgo="
    return reader


@pytest.fixture
def make_request() -> Callable[..., LLMRequest]:
    def factory(messages=None, api_format="openai_compatible", model="gpt-4o-mini", **options):
        conversation_id = options.pop("conversation_id", None)
        base_url = options.pop("base_url", None)
        return LLMRequest(
            messages=messages if messages is not None else [{"role": "user", "content": "Hi"}],
            api_format=api_format,
            api_key="test-key",
            model=model,
            base_url=base_url,
            options=CallOptions(**options),
            conversation_id=conversation_id,
        )
    return factory


def sse_body(payloads: List[Any], done: bool = True) -> bytes:
    """Encode payloads as an SSE body (dicts are JSON-encoded)."""
    lines = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        lines.append(f"data: {data}\n\n")
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


def openai_delta(text: str = None, finish_reason: str = None, **delta) -> Dict[str, Any]:
    if text is not None:
        delta["content"] = text
    return {"choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}]}


@pytest.fixture
def make_dispatcher(file_reader):
    """Build a dispatcher whose HTTP traffic goes to `handler`."""
    clients = []

    def factory(handler, **kwargs) -> LLMDispatcher:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        clients.append(client)
        kwargs.setdefault("file_reader", file_reader)
        kwargs.setdefault("settings", Settings())
        return LLMDispatcher(http_client=client, **kwargs)

    return factory
