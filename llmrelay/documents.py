"""
Expansion of document attachments into text.

Providers cannot read word-processor documents or most plain-text files
natively, so before a request is built those attachments are replaced with
their extracted text. PDFs and media are left for the adapter's own
capability check.
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import List, Optional, Protocol, Union

from .errors import UnsupportedDocumentError
from .media import attachment_name
from .types import CanonicalMessage, FilePart, Part, TextPart

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHARS = 60_000

_DOCX_MIME = "officedocument.wordprocessingml.document"
_PLAIN_TEXT_NAME_RE = re.compile(r"\.(txt|md|csv|json)$", re.IGNORECASE)


class TextExtractor(Protocol):
    """
    External document text-extraction service.
    """

    async def extract(self, url: str) -> str:
        ...


def is_docx(part: FilePart) -> bool:
    return _DOCX_MIME in (part.mime_type or "") or (part.name or "").lower().endswith(".docx")


def is_plain_text(part: FilePart) -> bool:
    mime = part.mime_type or ""
    if mime.startswith("text/") or mime == "application/json":
        return True
    return bool(_PLAIN_TEXT_NAME_RE.search(part.name or ""))


def is_expandable(part: Part) -> bool:
    """True for file parts whose text should be extracted before sending."""
    if not isinstance(part, FilePart):
        return False
    if part.mime_type == "application/pdf":
        return False
    return is_docx(part) or is_plain_text(part)


class DocumentExpander:
    """
    Replaces document attachments with their extracted text.

    Each expanded attachment becomes an optional `[Attachment: name (mime)]`
    marker followed by the extracted text, clipped to `max_chars`. When
    extraction fails the original part is kept.
    """

    def __init__(
        self,
        extractor: Optional[TextExtractor],
        max_chars: int = DEFAULT_MAX_CHARS,
        include_marker: bool = True,
    ):
        self.extractor = extractor
        self.max_chars = max_chars
        self.include_marker = include_marker

    async def expand(self, messages: List[CanonicalMessage]) -> List[CanonicalMessage]:
        """
        Return a new message list with document parts expanded.

        The input list and its messages are not modified.
        """
        out = []
        for msg in messages:
            if not any(is_expandable(p) for p in msg.content):
                out.append(msg)
                continue

            new_parts: List[Part] = []
            for part in msg.content:
                new_parts.extend(await self._expand_part(part))
            out.append(
                CanonicalMessage(
                    role=msg.role,
                    content=new_parts,
                    tool_calls=msg.tool_calls,
                    tool_call_id=msg.tool_call_id,
                    name=msg.name,
                    active_tool_loop=msg.active_tool_loop,
                )
            )
        return out

    async def _expand_part(self, part: Part) -> List[Part]:
        if not is_expandable(part) or self.extractor is None:
            return [part]

        try:
            text = await self.extractor.extract(part.url)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Text extraction failed for %s: %s", attachment_name(part), e)
            return [part]

        expanded: List[Part] = []
        if self.include_marker:
            expanded.append(
                TextPart(f"[Attachment: {attachment_name(part)} ({part.mime_type or 'unknown'})]")
            )
        expanded.append(TextPart((text or "")[: self.max_chars]))
        return expanded


class LocalTextExtractor:
    """
    Reads plain-text attachments from the upload directory.

    Only handles text formats; anything else raises UnsupportedDocumentError,
    which the expander treats as a non-fatal failure.
    """

    def __init__(self, upload_dir: Union[str, Path]):
        self.upload_dir = Path(upload_dir)

    def _read(self, url: str) -> str:
        path = Path(url)
        if not (path.is_absolute() and path.is_file()):
            path = self.upload_dir / path.name
        if not _PLAIN_TEXT_NAME_RE.search(path.name):
            raise UnsupportedDocumentError(f"Cannot extract text from {path.name}")
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            return f.read()

    async def extract(self, url: str) -> str:
        return await asyncio.to_thread(self._read, url)
