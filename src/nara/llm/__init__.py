"""Language model client primitives."""

from .client import ChatModel, ModelCallError, OpenRouterChatModel, OpenRouterEmbedder, TextEmbedder
from .config import LLMSettings

__all__ = [
    "ChatModel",
    "LLMSettings",
    "ModelCallError",
    "OpenRouterChatModel",
    "OpenRouterEmbedder",
    "TextEmbedder",
]
