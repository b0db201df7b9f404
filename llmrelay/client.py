import asyncio
import json
import logging
from dataclasses import replace
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Set, Tuple, Union

import httpx

from .capabilities import CapabilityDescriptor
from .config import Settings
from .documents import DocumentExpander, LocalTextExtractor, TextExtractor
from .errors import LLMRelayError, NetworkError, ParseError, ProviderError
from .media import FileReader, LocalFileReader
from .normalize import normalize_messages
from .presets import GEMINI_OFFICIAL, OPENAI_COMPATIBLE
from .providers.base import BaseAdapter
from .providers.gemini import GeminiOfficialAdapter
from .providers.openai import OpenAICompatibleAdapter
from .streaming import StreamAccumulator
from .tool_calls import ToolLoop
from .types import LLMRequest, RequestEnvelope, ResponseEnvelope, ToolCall

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str, str], Union[None, Awaitable[None]]]
ToolHandler = Callable[[Dict[str, Any]], Any]


def redact_url(url: str) -> str:
    """
    URL without its query string (Gemini keys travel there).
    """
    return url.split("?", 1)[0]


def status_error(status_code: int, body: bytes) -> LLMRelayError:
    """
    Map a non-2xx response to ProviderError (parseable error message) or
    NetworkError (anything else).
    """
    try:
        data = json.loads(body) if body else None
    except ValueError:
        data = None
    # Gemini stream endpoints wrap the error object in a list
    if isinstance(data, list) and data:
        data = data[0]
    message = BaseAdapter.error_message(data)
    if message:
        return ProviderError(message, status_code=status_code, payload=data)
    return NetworkError(f"HTTP {status_code}", status_code=status_code)


async def _read_next(chunks: AsyncIterator[bytes]) -> Optional[bytes]:
    return await anext(chunks, None)


class LLMDispatcher:
    """
    Single entry point for calling LLM providers.

    The dispatcher selects the adapter for a request's wire format, runs the
    normalize -> expand documents -> build request pipeline, performs the HTTP
    call, and turns every outcome into a ResponseEnvelope. Failures are
    returned, not raised: an errored envelope has `error` set and content
    `"Error: ..."`. Cancelled calls return the text received so far with
    `aborted=True`.

    Calls are attributed by `LLMRequest.conversation_id`; `cancel()` reaches every
    in-flight call registered under that id.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        file_reader: Optional[FileReader] = None,
        extractor: Optional[TextExtractor] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            http_client (httpx.AsyncClient, optional): Shared client. One is
                created (and owned) when omitted.
            file_reader (FileReader, optional): Resolves stored attachments to
                data URIs. Defaults to reading from the upload directory.
            extractor (TextExtractor, optional): Document text extraction.
                Defaults to reading plain-text uploads from the upload
                directory.
            settings (Settings, optional): Defaults to `Settings.from_env()`.
        """
        self.settings = settings or Settings.from_env()
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=self.settings.timeout)

        file_reader = file_reader or LocalFileReader(self.settings.upload_dir)
        self.adapters: Dict[str, BaseAdapter] = {
            OPENAI_COMPATIBLE: OpenAICompatibleAdapter(file_reader),
            GEMINI_OFFICIAL: GeminiOfficialAdapter(file_reader),
        }
        self.expander = DocumentExpander(
            extractor or LocalTextExtractor(self.settings.upload_dir),
            max_chars=self.settings.max_document_chars,
        )
        # conversation id -> cancel signals of its in-flight calls
        self._cancel_events: Dict[str, Set[asyncio.Event]] = {}

    async def __aenter__(self) -> "LLMDispatcher":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()

    # ==========================================================================
    # Adapters
    # ==========================================================================

    def get_adapter(self, api_format: str) -> BaseAdapter:
        """
        Adapter for a wire format. Unknown formats use the OpenAI-compatible one.
        """
        adapter = self.adapters.get(api_format)
        if adapter is None:
            logger.warning("Unknown api_format %r; using openai_compatible", api_format)
            adapter = self.adapters[OPENAI_COMPATIBLE]
        return adapter

    def get_capabilities(self, api_format: str) -> CapabilityDescriptor:
        return self.get_adapter(api_format).capabilities

    async def _prepare(self, adapter: BaseAdapter, request: LLMRequest, stream: bool) -> RequestEnvelope:
        messages = await self.expander.expand(normalize_messages(request.messages))
        return await adapter.build_request(replace(request, messages=messages), stream=stream)

    # ==========================================================================
    # Cancellation
    # ==========================================================================

    def cancel(self, conversation_id: str) -> bool:
        """
        Cancel every in-flight call of a conversation.

        Returns:
            bool: True if at least one call was registered under that id.
        """
        events = self._cancel_events.get(conversation_id)
        if not events:
            return False
        for event in events:
            event.set()
        return True

    def _register(
        self, request: LLMRequest, cancel: Optional[asyncio.Event]
    ) -> Tuple[asyncio.Event, Optional[asyncio.TimerHandle]]:
        event = cancel or asyncio.Event()
        if request.conversation_id:
            self._cancel_events.setdefault(request.conversation_id, set()).add(event)

        timer = None
        timeout = request.options.timeout
        if timeout:
            def on_timeout():
                logger.info("Call for conversation %s timed out after %ss", request.conversation_id, timeout)
                event.set()

            timer = asyncio.get_running_loop().call_later(timeout, on_timeout)
        return event, timer

    def _unregister(
        self,
        request: LLMRequest,
        event: asyncio.Event,
        timer: Optional[asyncio.TimerHandle],
    ) -> None:
        if timer is not None:
            timer.cancel()
        events = self._cancel_events.get(request.conversation_id)
        if events is not None:
            events.discard(event)
            if not events:
                del self._cancel_events[request.conversation_id]

    # ==========================================================================
    # Calls
    # ==========================================================================

    async def _post_json(self, envelope: RequestEnvelope) -> Dict[str, Any]:
        logger.debug("POST %s", redact_url(envelope.endpoint))
        try:
            response = await self.http_client.post(
                envelope.endpoint, headers=envelope.headers, json=envelope.body
            )
        except httpx.HTTPError as e:
            raise NetworkError(f"Request failed: {type(e).__name__}") from e

        if response.status_code >= 400:
            raise status_error(response.status_code, response.content)
        try:
            return response.json()
        except ValueError as e:
            raise ParseError("Response body is not valid JSON") from e

    def _failed(self, request: LLMRequest, error: Exception) -> ResponseEnvelope:
        if isinstance(error, LLMRelayError):
            logger.warning("%s call failed: %s", request.api_format, error)
        else:
            logger.exception("%s call failed unexpectedly", request.api_format)
        return ResponseEnvelope.from_error(error, conversation_id=request.conversation_id)

    async def call(self, request: LLMRequest, cancel: Optional[asyncio.Event] = None) -> ResponseEnvelope:
        """
        Send a non-streaming request.

        Args:
            request (LLMRequest): The call description.
            cancel (asyncio.Event, optional): Setting it aborts the call.

        Returns:
            ResponseEnvelope: The parsed response, an aborted envelope, or an
            error envelope. Never raises for provider or network failures.
        """
        adapter = self.get_adapter(request.api_format)
        event, timer = self._register(request, cancel)
        aborted = ResponseEnvelope(content="", aborted=True, conversation_id=request.conversation_id)
        post = waiter = None
        try:
            envelope = await self._prepare(adapter, request, stream=False)
            if event.is_set():
                return aborted

            post = asyncio.ensure_future(self._post_json(envelope))
            waiter = asyncio.ensure_future(event.wait())
            await asyncio.wait({post, waiter}, return_when=asyncio.FIRST_COMPLETED)
            if not post.done():
                return aborted

            result = adapter.parse_response(post.result())
            result.conversation_id = request.conversation_id
            return result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return self._failed(request, e)
        finally:
            for task in (post, waiter):
                if task is not None and not task.done():
                    task.cancel()
            self._unregister(request, event, timer)

    async def stream(
        self,
        request: LLMRequest,
        on_chunk: Optional[ChunkCallback] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> ResponseEnvelope:
        """
        Send a streaming request.

        `on_chunk(delta_text, full_text)` is called for every text delta, in
        order, as soon as it is decoded. It may be a plain function or a
        coroutine function. After `cancel` is set no further callback runs.

        Args:
            request (LLMRequest): The call description.
            on_chunk (Callable, optional): Per-delta callback.
            cancel (asyncio.Event, optional): Setting it aborts the stream.

        Returns:
            ResponseEnvelope: Full text and tool calls on completion, the text
            so far with `aborted=True` on cancellation, or an error envelope.
        """
        adapter = self.get_adapter(request.api_format)
        acc = StreamAccumulator(adapter, request.conversation_id)
        event, timer = self._register(request, cancel)
        delivered: List[str] = []
        waiter = send = response = None
        try:
            envelope = await self._prepare(adapter, request, stream=True)
            if event.is_set():
                return self._aborted(acc, delivered)

            waiter = asyncio.ensure_future(event.wait())
            acc.request_sent()
            logger.debug("POST (stream) %s", redact_url(envelope.endpoint))
            http_request = self.http_client.build_request(
                "POST", envelope.endpoint, headers=envelope.headers, json=envelope.body
            )
            # Waiting for the response headers races the cancel signal too
            send = asyncio.ensure_future(self.http_client.send(http_request, stream=True))
            await asyncio.wait({send, waiter}, return_when=asyncio.FIRST_COMPLETED)
            if not send.done():
                return self._aborted(acc, delivered)

            response = send.result()
            if response.status_code >= 400:
                raise status_error(response.status_code, await response.aread())
            await self._consume(response, acc, event, waiter, on_chunk, delivered)

            if event.is_set():
                return self._aborted(acc, delivered)
            acc.finish()
            if acc.error is not None:
                logger.warning("%s stream failed: %s", request.api_format, acc.error)
            return acc.result()
        except asyncio.CancelledError:
            raise
        except httpx.HTTPError as e:
            if event.is_set():
                return self._aborted(acc, delivered)
            return self._failed(request, NetworkError(f"Stream failed: {type(e).__name__}"))
        except Exception as e:
            return self._failed(request, e)
        finally:
            for task in (send, waiter):
                if task is not None and not task.done():
                    task.cancel()
            if response is not None:
                await response.aclose()
            self._unregister(request, event, timer)

    @staticmethod
    def _aborted(acc: StreamAccumulator, delivered: List[str]) -> ResponseEnvelope:
        # An aborted result holds exactly the text handed to on_chunk
        acc.abort()
        result = acc.result()
        if result.aborted:
            result.content = "".join(delivered)
        return result

    async def _consume(
        self,
        response: httpx.Response,
        acc: StreamAccumulator,
        event: asyncio.Event,
        waiter: asyncio.Future,
        on_chunk: Optional[ChunkCallback],
        delivered: List[str],
    ) -> None:
        # Each read races the cancel signal; the caller closes the response.
        chunks = response.aiter_bytes()
        full_text = ""
        while not acc.is_done:
            read = asyncio.ensure_future(_read_next(chunks))
            await asyncio.wait({read, waiter}, return_when=asyncio.FIRST_COMPLETED)
            if event.is_set():
                read.cancel()
                return
            data = read.result()
            if data is None:
                return

            for chunk in acc.feed(data):
                if event.is_set():
                    return
                if not chunk.delta_text:
                    continue
                delivered.append(chunk.delta_text)
                full_text += chunk.delta_text
                if on_chunk is not None:
                    result = on_chunk(chunk.delta_text, full_text)
                    if asyncio.iscoroutine(result):
                        await result

    async def astream(
        self,
        request: LLMRequest,
        cancel: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """
        Stream a response as events.

        Yields:
            Dict[str, Any]: Token events, then exactly one terminal event.
                - {"type": "token", "provider", "conversation_id", "text"}
                - {"type": "done" | "aborted" | "error", "provider",
                   "conversation_id", "text", "response", "meta"}
                  ("error" events also carry "error": str)
        """
        queue: asyncio.Queue = asyncio.Queue()
        cancel = cancel or asyncio.Event()

        def on_chunk(delta: str, full: str) -> None:
            queue.put_nowait({
                "type": "token",
                "provider": request.api_format,
                "conversation_id": request.conversation_id,
                "text": delta,
            })

        task = asyncio.ensure_future(self.stream(request, on_chunk=on_chunk, cancel=cancel))
        task.add_done_callback(lambda _: queue.put_nowait(None))
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event

            envelope = task.result()
            kind = "error" if envelope.is_error else "aborted" if envelope.aborted else "done"
            terminal = {
                "type": kind,
                "provider": request.api_format,
                "conversation_id": request.conversation_id,
                "text": envelope.content,
                "response": envelope,
                "meta": {
                    "model": request.model,
                    "usage": envelope.usage,
                    "finish_reason": envelope.finish_reason,
                },
            }
            if envelope.is_error:
                terminal["error"] = str(envelope.error)
            yield terminal
        finally:
            if not task.done():
                # Consumer stopped early
                cancel.set()
                await asyncio.gather(task, return_exceptions=True)

    # ==========================================================================
    # Tool Calling
    # ==========================================================================

    async def call_with_tools(
        self,
        request: LLMRequest,
        tool_handlers: Dict[str, ToolHandler],
        max_iterations: int = 10,
        cancel: Optional[asyncio.Event] = None,
    ) -> Tuple[ResponseEnvelope, List[Any]]:
        """
        Run a tool-calling loop until the model answers with plain text.

        Each round sends the conversation plus the active tool turns, executes
        every requested tool with its handler, and feeds the results back.

        Args:
            request (LLMRequest): Call description; `options.tools` must hold
                the tool declarations.
            tool_handlers (Dict[str, Callable]): Tool name -> handler taking the
                arguments dict. Handlers may be sync or async.
            max_iterations (int): Safety limit for tool rounds. Defaults to 10.
            cancel (asyncio.Event, optional): Aborts the current round.

        Returns:
            Tuple[ResponseEnvelope, List]: The final response and the history to
            persist (tool turns stripped of provider metadata, followed by the
            final answer). On error or abort the history is returned unchanged
            apart from turns already completed.
        """
        loop = ToolLoop(request.messages)
        response = await self.call(replace(request, messages=loop.messages()), cancel=cancel)

        while response.tool_calls and not response.is_error and not response.aborted:
            if loop.rounds >= max_iterations:
                logger.warning("Tool loop stopped after %d rounds", loop.rounds)
                break
            loop.add_response(response)
            for tc in response.tool_calls:
                loop.add_result(tc, await self._execute_tool_call(tc, tool_handlers))
            response = await self.call(replace(request, messages=loop.messages()), cancel=cancel)

        if response.is_error or response.aborted:
            return response, loop.messages()
        return response, loop.close(response.content)

    async def _execute_tool_call(self, tool_call: ToolCall, tool_handlers: Dict[str, ToolHandler]) -> str:
        """
        Execute a single tool call with its registered handler.

        Handler failures are reported back to the model as the tool result.
        """
        handler = tool_handlers.get(tool_call.name)
        if handler is None:
            return f"Error: No handler for tool '{tool_call.name}'"
        try:
            result = handler(tool_call.arguments)
            if asyncio.iscoroutine(result):
                result = await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Tool %s failed: %s", tool_call.name, e)
            return f"Error executing tool '{tool_call.name}': {e}"
        return result if isinstance(result, str) else json.dumps(result, ensure_ascii=False, default=str)

    # ==========================================================================
    # Models
    # ==========================================================================

    async def list_models(
        self,
        api_format: str,
        api_key: str,
        base_url: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> List[str]:
        """
        Get the list of available models for a wire format and endpoint.

        For Gemini, only models that support 'generateContent' are returned.

        Raises:
            NetworkError: Connection failure or non-2xx without an error body.
            ProviderError: The API returned an error payload.
        """
        adapter = self.get_adapter(api_format)
        envelope = adapter.models_request(api_key, base_url=base_url, provider=provider)
        logger.debug("GET %s", redact_url(envelope.endpoint))
        try:
            response = await self.http_client.get(envelope.endpoint, headers=envelope.headers)
        except httpx.HTTPError as e:
            raise NetworkError(f"Request failed: {type(e).__name__}") from e
        if response.status_code >= 400:
            raise status_error(response.status_code, response.content)
        try:
            data = response.json()
        except ValueError as e:
            raise ParseError("Response body is not valid JSON") from e
        return adapter.parse_models(data)
