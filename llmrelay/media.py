import asyncio
import base64
import logging
import math
import re
from pathlib import Path
from typing import Optional, Protocol, Tuple, Union

from .types import MediaPart

logger = logging.getLogger(__name__)

# =============================================================================
# MIME Helpers
# =============================================================================

DEFAULT_MIME_TYPE = "application/octet-stream"

# Map file extensions to MIME types
MIME_TYPES = {
    # Video
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".mov": "video/quicktime",
    ".avi": "video/x-msvideo",
    ".mkv": "video/x-matroska",
    ".m4v": "video/x-m4v",
    # Audio
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
    ".m4a": "audio/mp4",
    ".flac": "audio/flac",
    ".aac": "audio/aac",
    # Documents
    ".pdf": "application/pdf",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".ppt": "application/vnd.ms-powerpoint",
    ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".json": "application/json",
    ".csv": "text/csv",
    # Images
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".svg": "image/svg+xml",
}

_DATA_URI_RE = re.compile(r"^data:(.*?);base64,(.*)$", re.DOTALL)


def mime_type_from_path(path: str) -> str:
    """
    Infer a MIME type from the extension of a path or URL.

    Query strings and fragments are ignored. Unknown extensions map to
    `application/octet-stream`.
    """
    if not path:
        return DEFAULT_MIME_TYPE
    clean = path.split("?", 1)[0].split("#", 1)[0]
    suffix = Path(clean).suffix.lower()
    return MIME_TYPES.get(suffix, DEFAULT_MIME_TYPE)


def media_category(mime_type: Optional[str]) -> str:
    """
    Coarse category of a MIME type: image, video, audio, pdf, document,
    spreadsheet, presentation, text or file.
    """
    if not mime_type:
        return "file"
    if mime_type.startswith("image/"):
        return "image"
    if mime_type.startswith("video/"):
        return "video"
    if mime_type.startswith("audio/"):
        return "audio"
    if mime_type == "application/pdf":
        return "pdf"
    if "word" in mime_type or "document" in mime_type:
        return "document"
    if "sheet" in mime_type or "excel" in mime_type:
        return "spreadsheet"
    if "presentation" in mime_type or "powerpoint" in mime_type:
        return "presentation"
    if mime_type.startswith("text/"):
        return "text"
    return "file"


def is_remote_url(url: str) -> bool:
    return url.startswith(("http://", "https://"))


def parse_data_uri(data_uri: Optional[str]) -> Optional[Tuple[str, str]]:
    """
    Split a base64 data URI into its parts.

    Args:
        data_uri (str): A `data:<mime>;base64,<data>` string.

    Returns:
        Optional[Tuple[str, str]]: (mime_type, base64_data), or None when the
        value is not a base64 data URI.
    """
    if not data_uri or not data_uri.startswith("data:"):
        return None
    match = _DATA_URI_RE.match(data_uri)
    if not match:
        return None
    return match.group(1), match.group(2)


def base64_size(b64_data: str) -> int:
    """Decoded size in bytes of a base64 payload (or data URI)."""
    if not b64_data:
        return 0
    if "," in b64_data:
        b64_data = b64_data.split(",", 1)[1]
    return math.ceil(len(b64_data) * 3 / 4)


def is_too_large(b64_data: str, max_bytes: int) -> bool:
    return base64_size(b64_data) > max_bytes


def attachment_name(part: MediaPart) -> str:
    name = getattr(part, "name", None)
    if name:
        return name
    if part.url and not part.url.startswith("data:"):
        basename = part.url.rstrip("/").split("/")[-1]
        if basename:
            return basename
    return "Unknown file"


def fallback_text(part: MediaPart) -> str:
    """
    Text stand-in for an attachment a provider cannot ingest.
    """
    return f"[Attachment: {attachment_name(part)} ({part.mime_type or 'unknown'})]"


# =============================================================================
# File Encoding
# =============================================================================

def encode_file(file_path: Union[str, Path]) -> Tuple[str, str]:
    """
    Encode a local file to base64 for LLM usage.

    Reads the file from the given path, determines its MIME type based on extension,
    and returns a tuple of the base64-encoded data and the MIME type.

    Args:
        file_path (Union[str, Path]): Path to the file.

    Returns:
        Tuple[str, str]: A tuple containing:
            - b64_data (str): The base64-encoded string of the file content.
            - mime_type (str): The MIME type (e.g., 'image/png').

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    path = Path(file_path)
    if not path.is_file():
        raise FileNotFoundError(f"File not found: {file_path}")

    mime_type = mime_type_from_path(path.name)
    with open(path, "rb") as f:
        b64_data = base64.b64encode(f.read()).decode("utf-8")

    return b64_data, mime_type


class FileReader(Protocol):
    """
    Resolves a stored attachment reference to a base64 data URI.
    """

    async def read(self, url: str) -> Optional[str]:
        ...


class LocalFileReader:
    """
    Reads attachments from disk.

    Absolute paths that exist are read directly; anything else is looked up by
    basename inside `upload_dir`. Data URIs and http(s) URLs are returned
    unchanged. Returns None when the file cannot be read.
    """

    def __init__(self, upload_dir: Union[str, Path, None] = None):
        self.upload_dir = Path(upload_dir) if upload_dir else None

    def _resolve(self, url: str) -> Optional[Path]:
        path = Path(url)
        if path.is_absolute() and path.is_file():
            return path
        if self.upload_dir is not None:
            candidate = self.upload_dir / path.name
            if candidate.is_file():
                return candidate
        return None

    async def read(self, url: str) -> Optional[str]:
        if not url:
            return None
        if url.startswith("data:") or is_remote_url(url):
            return url

        path = self._resolve(url)
        if path is None:
            logger.warning("Attachment not found: %s", url)
            return None

        try:
            b64_data, mime_type = await asyncio.to_thread(encode_file, path)
        except OSError as e:
            logger.warning("Failed to read attachment %s: %s", url, e)
            return None
        return f"data:{mime_type};base64,{b64_data}"
