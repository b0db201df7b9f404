import logging
import os
from dataclasses import dataclass
from typing import Optional

import dotenv

from .presets import GEMINI_OFFICIAL

logger = logging.getLogger(__name__)

DEFAULT_UPLOAD_DIR = "./uploads"
DEFAULT_TIMEOUT = 120.0
DEFAULT_MAX_DOCUMENT_CHARS = 60_000
DEFAULT_LOG_LEVEL = "INFO"


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r; using %s", name, value, default)
        return default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r; using %s", name, value, default)
        return default


@dataclass
class Settings:
    """
    Runtime settings.

    Attributes:
        upload_dir: Directory holding stored attachments (LLMRELAY_UPLOAD_DIR).
        timeout: HTTP client timeout in seconds (LLMRELAY_TIMEOUT).
        max_document_chars: Ceiling for extracted document text (LLMRELAY_MAX_DOCUMENT_CHARS).
        log_level: Log level name (LLMRELAY_LOG_LEVEL).
    """
    upload_dir: str = DEFAULT_UPLOAD_DIR
    timeout: float = DEFAULT_TIMEOUT
    max_document_chars: int = DEFAULT_MAX_DOCUMENT_CHARS
    log_level: str = DEFAULT_LOG_LEVEL

    @classmethod
    def from_env(cls, load_dotenv: bool = True) -> "Settings":
        """
        Build settings from environment variables (and a `.env` file).
        """
        if load_dotenv:
            dotenv.load_dotenv()
        return cls(
            upload_dir=os.getenv("LLMRELAY_UPLOAD_DIR") or DEFAULT_UPLOAD_DIR,
            timeout=_env_float("LLMRELAY_TIMEOUT", DEFAULT_TIMEOUT),
            max_document_chars=_env_int("LLMRELAY_MAX_DOCUMENT_CHARS", DEFAULT_MAX_DOCUMENT_CHARS),
            log_level=(os.getenv("LLMRELAY_LOG_LEVEL") or DEFAULT_LOG_LEVEL).upper(),
        )


def api_key_for(api_format: str) -> Optional[str]:
    """
    API key for a wire format from the environment.

    Gemini accepts GEMINI_API_KEY or GOOGLE_API_KEY; everything else uses
    OPENAI_API_KEY.
    """
    if api_format == GEMINI_OFFICIAL:
        return os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
    return os.getenv("OPENAI_API_KEY")
