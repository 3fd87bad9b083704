"""
AI Module
=========

Language model access for the memory subsystem:
- Cold tier summaries during consolidation
"""

from .llm_client import LLMClient, LLMResponse, AnthropicClient, OpenAIClient, get_llm_client

__all__ = [
    "LLMClient",
    "LLMResponse",
    "AnthropicClient",
    "OpenAIClient",
    "get_llm_client",
]
