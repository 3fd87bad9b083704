"""
LLM Client
==========

Abstract client for language models.
Supports Claude (Anthropic), with OpenAI as fallback.

The LLM is used to compress batches of aged Warm content into Cold tier
summaries. Provider failures surface as ModelUnavailable so the
consolidation job can record the batch as failed and move on.
"""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import anthropic
import openai

from src.knowledge.errors import ModelUnavailable

logger = logging.getLogger(__name__)


class LLMProvider(Enum):
    """Supported LLM providers."""
    ANTHROPIC = "anthropic"
    OPENAI = "openai"


@dataclass
class LLMResponse:
    """Response from an LLM."""
    content: str
    model: str
    provider: LLMProvider
    tokens_input: int
    tokens_output: int
    cost_usd: float

    @property
    def total_tokens(self) -> int:
        return self.tokens_input + self.tokens_output


class LLMClient(ABC):
    """Abstract LLM client."""

    @abstractmethod
    def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 1024,
        temperature: float = 0.3,
    ) -> LLMResponse:
        """Generate a response. Raises ModelUnavailable on provider failure."""


class AnthropicClient(LLMClient):
    """
    Client for Claude (Anthropic).

    claude-3-haiku is plenty for summaries; sonnet is the default for quality.
    """

    # Pricing per 1M tokens (USD)
    PRICING = {
        "claude-sonnet-4-20250514": {"input": 3.0, "output": 15.0},
        "claude-3-5-haiku-20241022": {"input": 0.8, "output": 4.0},
        "claude-3-haiku-20240307": {"input": 0.25, "output": 1.25},
    }

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "claude-sonnet-4-20250514",
    ):
        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        self.model = model
        self._client: Optional[anthropic.Anthropic] = None

        if not self.api_key:
            logger.warning("ANTHROPIC_API_KEY not set - summarization disabled")

    def _get_client(self) -> anthropic.Anthropic:
        if self._client is None:
            self._client = anthropic.Anthropic(api_key=self.api_key)
        return self._client

    def _calculate_cost(self, input_tokens: int, output_tokens: int) -> float:
        pricing = self.PRICING.get(self.model, {"input": 3.0, "output": 15.0})
        cost = (input_tokens * pricing["input"] + output_tokens * pricing["output"]) / 1_000_000
        return round(cost, 6)

    def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 1024,
        temperature: float = 0.3,
    ) -> LLMResponse:
        if not self.api_key:
            raise ModelUnavailable("ANTHROPIC_API_KEY required", capability="summarization")

        kwargs = {
            "model": self.model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
        }
        if system:
            kwargs["system"] = system

        try:
            response = self._get_client().messages.create(**kwargs)
        except anthropic.AnthropicError as e:
            raise ModelUnavailable(f"Anthropic call failed: {e}", capability="summarization") from e

        text_blocks = [block.text for block in response.content if getattr(block, "type", "text") == "text"]
        if not text_blocks:
            raise ModelUnavailable("Anthropic returned no text content", capability="summarization")

        input_tokens = response.usage.input_tokens
        output_tokens = response.usage.output_tokens

        return LLMResponse(
            content="".join(text_blocks),
            model=self.model,
            provider=LLMProvider.ANTHROPIC,
            tokens_input=input_tokens,
            tokens_output=output_tokens,
            cost_usd=self._calculate_cost(input_tokens, output_tokens),
        )


class OpenAIClient(LLMClient):
    """
    Client for OpenAI GPT.
    Used as fallback when Anthropic is not configured.
    """

    PRICING = {
        "gpt-4o": {"input": 2.5, "output": 10.0},
        "gpt-4o-mini": {"input": 0.15, "output": 0.6},
    }

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
    ):
        # Support both OPENAI_API_KEY and GPT_API_KEY
        self.api_key = api_key or os.getenv("OPENAI_API_KEY") or os.getenv("GPT_API_KEY")
        self.model = model
        self._client: Optional[openai.OpenAI] = None

    def _get_client(self) -> openai.OpenAI:
        if self._client is None:
            self._client = openai.OpenAI(api_key=self.api_key)
        return self._client

    def _calculate_cost(self, input_tokens: int, output_tokens: int) -> float:
        pricing = self.PRICING.get(self.model, {"input": 2.5, "output": 10.0})
        cost = (input_tokens * pricing["input"] + output_tokens * pricing["output"]) / 1_000_000
        return round(cost, 6)

    def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 1024,
        temperature: float = 0.3,
    ) -> LLMResponse:
        if not self.api_key:
            raise ModelUnavailable("OPENAI_API_KEY required", capability="summarization")

        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        try:
            response = self._get_client().chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except openai.OpenAIError as e:
            raise ModelUnavailable(f"OpenAI call failed: {e}", capability="summarization") from e

        if not response.choices:
            raise ModelUnavailable("OpenAI returned no choices", capability="summarization")

        input_tokens = response.usage.prompt_tokens
        output_tokens = response.usage.completion_tokens

        return LLMResponse(
            content=response.choices[0].message.content or "",
            model=self.model,
            provider=LLMProvider.OPENAI,
            tokens_input=input_tokens,
            tokens_output=output_tokens,
            cost_usd=self._calculate_cost(input_tokens, output_tokens),
        )


def get_llm_client(
    provider: Optional[str] = None,
    model: Optional[str] = None,
) -> LLMClient:
    """
    Factory for an LLM client.

    Priority:
    1. Explicit provider
    2. ANTHROPIC_API_KEY present -> Claude
    3. OPENAI_API_KEY or GPT_API_KEY present -> GPT

    Raises:
        ModelUnavailable: If no provider key is configured
    """
    openai_key = os.getenv("OPENAI_API_KEY") or os.getenv("GPT_API_KEY")
    anthropic_key = os.getenv("ANTHROPIC_API_KEY")

    if provider == "openai" or (not provider and openai_key and not anthropic_key):
        return OpenAIClient(model=model or "gpt-4o-mini")

    if provider == "anthropic" or anthropic_key:
        return AnthropicClient(model=model or "claude-sonnet-4-20250514")

    raise ModelUnavailable(
        "No LLM API key found. Set ANTHROPIC_API_KEY, OPENAI_API_KEY, or GPT_API_KEY",
        capability="summarization",
    )
