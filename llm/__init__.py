"""LLM integration module"""

from .client import LLMClient
from .prompts import CategorizationPrompt

__all__ = [
    "LLMClient",
    "CategorizationPrompt",
]
