from .base import BaseAdapter
from .openai import OpenAICompatibleAdapter
from .gemini import GeminiOfficialAdapter, sanitize_history

__all__ = ["BaseAdapter", "OpenAICompatibleAdapter", "GeminiOfficialAdapter", "sanitize_history"]
