"""Backend adapters, one per wire protocol."""

from chatgate.llm.providers.base import Provider
from chatgate.llm.providers.claude import ClaudeProvider
from chatgate.llm.providers.lmstudio import LMStudioProvider
from chatgate.llm.providers.ollama import OllamaProvider

__all__ = ["ClaudeProvider", "LMStudioProvider", "OllamaProvider", "Provider"]
