from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional

from ..capabilities import CapabilityDescriptor
from ..media import FileReader, LocalFileReader
from ..normalize import normalize_messages
from ..types import CanonicalMessage, LLMRequest, RequestEnvelope, ResponseEnvelope, StreamChunk


class BaseAdapter(ABC):
    """
    Abstract base class for provider wire-format adapters.

    An adapter is a pure translator: it builds RequestEnvelopes from canonical
    messages and turns provider payloads back into ResponseEnvelopes and
    StreamChunks. It never performs network I/O itself; the only awaited work
    is reading local attachments through the file reader.
    """

    api_format: str = ""
    capabilities: CapabilityDescriptor

    def __init__(self, file_reader: Optional[FileReader] = None):
        self.file_reader = file_reader or LocalFileReader()

    def prepare_messages(self, request: LLMRequest) -> List[CanonicalMessage]:
        """
        Canonical messages for a request (normalizing raw dict input).
        """
        return normalize_messages(request.messages)

    @abstractmethod
    async def build_request(self, request: LLMRequest, stream: bool = False) -> RequestEnvelope:
        """
        Build the provider-specific HTTP request.

        Args:
            request (LLMRequest): The call description.
            stream (bool): Whether to request a server-sent event stream.

        Returns:
            RequestEnvelope: Endpoint, headers and JSON body.
        """
        pass

    @abstractmethod
    def parse_response(self, data: Dict[str, Any]) -> ResponseEnvelope:
        """
        Parse a non-streaming JSON response.

        Raises:
            ProviderError: The payload carries an error object.
            SafetyBlockError: The provider blocked the answer.
        """
        pass

    @abstractmethod
    def parse_stream_chunk(self, payload: str) -> StreamChunk:
        """
        Parse the payload of one `data:` line.

        Raises:
            ParseError: The payload is not valid JSON. The accumulator logs it and
                continues with the next line.
        """
        pass

    @abstractmethod
    def models_request(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> RequestEnvelope:
        """
        Build the GET request that lists available models.
        """
        pass

    @abstractmethod
    def parse_models(self, data: Dict[str, Any]) -> List[str]:
        pass

    @staticmethod
    def error_message(data: Any) -> Optional[str]:
        """
        Extract a human-readable message from an error payload, if there is one.
        """
        if not isinstance(data, dict):
            return None
        error = data.get("error")
        if not error:
            return None
        if isinstance(error, dict):
            return error.get("message") or str(error)
        return str(error)

    async def read_media(self, url: str) -> Optional[str]:
        """
        Resolve an attachment URL to a data URI (or leave remote URLs as they are).
        """
        return await self.file_reader.read(url)

    @staticmethod
    def normalize_usage(
        provider: str,
        *,
        input_tokens: Optional[int],
        output_tokens: Optional[int],
        total_tokens: Optional[int],
        raw: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        """
        Normalize token usage information across providers.

        Creates a standardized dictionary structure for token usage statistics,
        optionally calculating totals if missing.

        Args:
            provider (str): Name of the provider.
            input_tokens (int, optional): Number of prompt tokens.
            output_tokens (int, optional): Number of generated tokens.
            total_tokens (int, optional): Total token count.
            raw (dict, optional): Raw usage data from the provider response.

        Returns:
            Dict[str, Any]: Standardized usage dictionary.
        """
        # Calculate total if not provided
        if total_tokens is None and input_tokens is not None and output_tokens is not None:
            total_tokens = input_tokens + output_tokens

        return {
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_tokens": total_tokens,
            "raw": {
                "provider": provider,
                **(raw or {}),
            } if raw is not None else None,
        }
