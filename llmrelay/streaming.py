"""
Server-sent event decoding and stream accumulation.
"""

import codecs
import enum
import logging
from typing import Dict, Any, List, Optional, Union

from .errors import ParseError, ProviderError, SafetyBlockError
from .normalize import parse_arguments
from .types import ResponseEnvelope, StreamChunk, ToolCall, ToolCallDelta

logger = logging.getLogger(__name__)


class SSEDecoder:
    """
    Incremental decoder for `text/event-stream` bodies.

    Bytes may be split anywhere, including inside a multi-byte character or in
    the middle of a line; the trailing partial line is kept until the next
    feed. Only `data:` payloads are returned.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, data: Union[bytes, str]) -> List[str]:
        if isinstance(data, bytes):
            data = self._decoder.decode(data)
        self._buffer += data
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return self._payloads(lines)

    def flush(self) -> List[str]:
        """
        Return the payload of a final line that had no trailing newline.
        """
        rest = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        return self._payloads([rest]) if rest else []

    @staticmethod
    def _payloads(lines: List[str]) -> List[str]:
        payloads = []
        for line in lines:
            line = line.rstrip("\r")
            if not line.startswith("data:"):
                continue
            payload = line[len("data:"):]
            if payload.startswith(" "):
                payload = payload[1:]
            payloads.append(payload)
        return payloads


class StreamState(enum.Enum):
    INIT = "init"
    REQUEST_SENT = "request_sent"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ABORTED = "aborted"
    ERRORED = "errored"


TERMINAL_STATES = frozenset({StreamState.COMPLETED, StreamState.ABORTED, StreamState.ERRORED})

# Terminates the stream whatever the wire format
DONE_MARKER = "[DONE]"


class StreamAccumulator:
    """
    Turns the raw bytes of one streaming call into StreamChunks and a final
    ResponseEnvelope.

    State machine: INIT -> REQUEST_SENT -> STREAMING -> COMPLETED | ABORTED | ERRORED.
    Once a terminal state is reached, further input is ignored.

    Tool-call deltas are merged two ways: OpenAI-compatible fragments are
    concatenated per `index`, complete Gemini calls are appended in arrival
    order.
    """

    def __init__(self, adapter, conversation_id: Optional[str] = None):
        self.adapter = adapter
        self.conversation_id = conversation_id
        self.state = StreamState.INIT
        self.text = ""
        self.finish_reason: Optional[str] = None
        self.usage: Optional[Dict[str, Any]] = None
        self.error: Optional[Exception] = None
        self.parse_errors = 0
        self.valid_payloads = 0
        self._decoder = SSEDecoder()
        self._partial_calls: Dict[int, Dict[str, Any]] = {}
        self._complete_calls: List[ToolCall] = []

    @property
    def is_done(self) -> bool:
        return self.state in TERMINAL_STATES

    def request_sent(self) -> None:
        if self.state == StreamState.INIT:
            self.state = StreamState.REQUEST_SENT

    def feed(self, data: Union[bytes, str]) -> List[StreamChunk]:
        """
        Consume raw bytes from the network.

        Returns:
            List[StreamChunk]: Chunks decoded from the complete lines, in order.
            Nothing is returned once the stream has ended.
        """
        if self.is_done:
            return []
        self.state = StreamState.STREAMING
        return self._handle_payloads(self._decoder.feed(data))

    def finish(self) -> List[StreamChunk]:
        """
        Signal the end of the HTTP body.

        A stream that ends without a terminal marker still completes normally,
        unless every payload it carried failed to parse.
        """
        if self.is_done:
            return []
        chunks = self._handle_payloads(self._decoder.flush())
        if not self.is_done:
            if self.parse_errors and not self.valid_payloads:
                self.fail(ParseError("Stream ended without a valid payload"))
            else:
                self.state = StreamState.COMPLETED
        return chunks

    def abort(self) -> None:
        if not self.is_done:
            self.state = StreamState.ABORTED

    def fail(self, error: Exception) -> None:
        if not self.is_done:
            self.error = error
            self.state = StreamState.ERRORED

    def _handle_payloads(self, payloads: List[str]) -> List[StreamChunk]:
        chunks = []
        for payload in payloads:
            if self.is_done:
                break
            if payload.strip() == DONE_MARKER:
                self.valid_payloads += 1
                self.state = StreamState.COMPLETED
                break
            try:
                chunk = self.adapter.parse_stream_chunk(payload)
            except ParseError as e:
                self.parse_errors += 1
                logger.warning("Skipping malformed stream line (%s): %.200s", e, payload)
                continue
            self.valid_payloads += 1
            self._apply(chunk)
            chunks.append(chunk)
        return chunks

    def _apply(self, chunk: StreamChunk) -> None:
        if chunk.delta_text:
            self.text += chunk.delta_text
        for delta in chunk.delta_tool_calls or []:
            self._merge_tool_call(delta)
        if chunk.finish_reason:
            self.finish_reason = chunk.finish_reason
        if chunk.usage:
            self.usage = chunk.usage

        if chunk.error:
            if chunk.blocked:
                self.fail(SafetyBlockError(chunk.finish_reason or "blocked"))
            else:
                self.fail(ProviderError(chunk.error))
        elif chunk.done:
            self.state = StreamState.COMPLETED

    def _merge_tool_call(self, delta: ToolCallDelta) -> None:
        if delta.arguments is not None:
            self._complete_calls.append(ToolCall(
                id=delta.id or f"call_{len(self._complete_calls)}",
                name=delta.name or "",
                arguments=delta.arguments,
                provider_metadata=delta.provider_metadata,
            ))
            return

        entry = self._partial_calls.setdefault(delta.index, {"id": None, "name": "", "arguments": ""})
        if delta.id:
            entry["id"] = delta.id
        if delta.name and not entry["name"]:
            entry["name"] = delta.name
        entry["arguments"] += delta.arguments_fragment

    def tool_calls(self) -> Optional[List[ToolCall]]:
        calls = [
            ToolCall(
                id=entry["id"] or f"call_{index}",
                name=entry["name"],
                arguments=parse_arguments(entry["arguments"]),
            )
            for index, entry in sorted(self._partial_calls.items())
        ]
        calls.extend(self._complete_calls)
        return calls or None

    def result(self) -> ResponseEnvelope:
        """
        Build the final envelope. Aborted streams keep the text received so far.
        """
        if self.state == StreamState.ERRORED:
            return ResponseEnvelope.from_error(
                self.error,
                conversation_id=self.conversation_id,
                raw={"partial_content": self.text},
            )
        return ResponseEnvelope(
            content=self.text,
            tool_calls=self.tool_calls(),
            finish_reason=self.finish_reason,
            usage=self.usage,
            aborted=self.state == StreamState.ABORTED,
            conversation_id=self.conversation_id,
        )
