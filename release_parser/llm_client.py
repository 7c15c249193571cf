"""
LLM Client with OpenAI/Anthropic provider switch.

Uses the Factory pattern (LLMClient.create) to instantiate the right provider
based on env vars or explicit argument. Each provider implements BaseLLMClient
so the Analyzer doesn't need to know which LLM is behind the call.

The OpenAI client talks to any OpenAI-compatible chat-completions endpoint;
by default that is GitHub Models, authenticated with a personal access token.
"""

import os
import json
from abc import ABC, abstractmethod
from typing import Optional
from enum import Enum

from .logger import get_module_logger
from .exceptions import LLMClientError

logger = get_module_logger("llm_client")

DEFAULT_BASE_URL = "https://models.github.ai/inference"
DEFAULT_OPENAI_MODEL = "openai/gpt-4o-mini"
DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-20250514"


class LLMProvider(Enum):
    """Supported LLM providers."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


class BaseLLMClient(ABC):
    """Abstract base class for LLM clients."""

    @abstractmethod
    def complete_json(
        self,
        prompt: str,
        schema: dict,
        schema_name: str = "response",
        system_prompt: Optional[str] = None
    ) -> dict:
        """
        Send a prompt and parse the response as JSON conforming to `schema`.

        Args:
            prompt: The user prompt
            schema: JSON schema the response must follow
            schema_name: Name reported to the provider for the schema
            system_prompt: Optional system prompt

        Returns:
            Parsed JSON response as dict

        Raises:
            LLMClientError: on any transport, status or parsing failure
        """
        pass


class OpenAIClient(BaseLLMClient):
    """OpenAI-compatible API client using strict structured outputs."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_OPENAI_MODEL,
        base_url: Optional[str] = None,
        client=None
    ):
        self.api_key = api_key or os.getenv("AI_TOKEN") or os.getenv("OPENAI_API_KEY")
        if not self.api_key:
            raise LLMClientError(
                "API key not provided (set AI_TOKEN or OPENAI_API_KEY)",
                provider="openai"
            )
        self.model = model
        self.base_url = base_url or os.getenv("AI_BASE_URL") or DEFAULT_BASE_URL

        if client is not None:
            self.client = client
            return

        # Lazy import: only import the openai SDK when this provider is used
        try:
            from openai import OpenAI
            self.client = OpenAI(api_key=self.api_key, base_url=self.base_url)
        except ImportError:
            raise LLMClientError(
                "openai package not installed. Run: pip install openai",
                provider="openai"
            )

    def complete_json(
        self,
        prompt: str,
        schema: dict,
        schema_name: str = "response",
        system_prompt: Optional[str] = None
    ) -> dict:
        """Send prompt with a strict json_schema response format."""
        messages = []

        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})

        messages.append({"role": "user", "content": prompt})

        content = None
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=0,
                response_format={
                    "type": "json_schema",
                    "json_schema": {"name": schema_name, "strict": True, "schema": schema}
                }
            )
            content = response.choices[0].message.content if response.choices else None
        except Exception as e:
            logger.error(f"OpenAI API error: {e}")
            raise LLMClientError(
                f"OpenAI API call failed: {str(e)}",
                provider="openai",
                details={"error": str(e)}
            )

        if not content:
            raise LLMClientError("Model returned empty content", provider="openai")

        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse OpenAI response as JSON: {e}")
            raise LLMClientError(
                f"Failed to parse response as JSON: {str(e)}",
                provider="openai",
                details={"response": content}
            )


class AnthropicClient(BaseLLMClient):
    """Anthropic API client."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_ANTHROPIC_MODEL,
        client=None
    ):
        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not self.api_key:
            raise LLMClientError(
                "Anthropic API key not provided",
                provider="anthropic"
            )
        self.model = model

        if client is not None:
            self.client = client
            return

        try:
            import anthropic
            self.client = anthropic.Anthropic(api_key=self.api_key)
        except ImportError:
            raise LLMClientError(
                "anthropic package not installed. Run: pip install anthropic",
                provider="anthropic"
            )

    def _complete(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        try:
            kwargs = {
                "model": self.model,
                "max_tokens": 4096,
                "temperature": 0,
                "messages": [{"role": "user", "content": prompt}]
            }

            if system_prompt:
                kwargs["system"] = system_prompt

            response = self.client.messages.create(**kwargs)
            return response.content[0].text if response.content else ""
        except Exception as e:
            logger.error(f"Anthropic API error: {e}")
            raise LLMClientError(
                f"Anthropic API call failed: {str(e)}",
                provider="anthropic",
                details={"error": str(e)}
            )

    def complete_json(
        self,
        prompt: str,
        schema: dict,
        schema_name: str = "response",
        system_prompt: Optional[str] = None
    ) -> dict:
        """Send prompt with the schema spelled out and parse the JSON reply."""
        # No native strict-schema mode, so the schema goes into the prompt and
        # the caller validates the result.
        json_prompt = (
            f"{prompt}\n\nRespond with valid JSON only, no additional text, "
            f"matching this JSON schema ({schema_name}):\n{json.dumps(schema)}"
        )

        response_text = self._complete(json_prompt, system_prompt)
        if not response_text.strip():
            raise LLMClientError("Model returned empty content", provider="anthropic")

        # Strip ```json fences the model sometimes adds
        text = response_text.strip()
        if text.startswith("```json"):
            text = text[7:]
        if text.startswith("```"):
            text = text[3:]
        if text.endswith("```"):
            text = text[:-3]

        try:
            return json.loads(text.strip())
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse Anthropic response as JSON: {e}")
            raise LLMClientError(
                f"Failed to parse response as JSON: {str(e)}",
                provider="anthropic",
                details={"response": response_text}
            )


class LLMClient:
    """
    Factory class for creating LLM clients with provider switch.

    Usage:
        # Using environment variable LLM_PROVIDER
        client = LLMClient.create()

        # Explicit provider
        client = LLMClient.create(provider=LLMProvider.ANTHROPIC)
    """

    @staticmethod
    def create(
        provider: Optional[LLMProvider] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None
    ) -> BaseLLMClient:
        """
        Create an LLM client for the specified provider.

        Args:
            provider: LLM provider (defaults to env var LLM_PROVIDER or 'openai')
            api_key: API key (defaults to provider-specific env var)
            model: Model name (defaults to AI_MODEL or the provider default)
            base_url: Endpoint for OpenAI-compatible providers

        Returns:
            Configured LLM client
        """
        if provider is None:
            provider_str = os.getenv("LLM_PROVIDER", "openai").lower()
            try:
                provider = LLMProvider(provider_str)
            except ValueError:
                logger.warning(
                    f"Unknown LLM_PROVIDER '{provider_str}', defaulting to openai"
                )
                provider = LLMProvider.OPENAI

        model = model or os.getenv("AI_MODEL")
        logger.info(f"Creating LLM client for provider: {provider.value}")

        if provider == LLMProvider.OPENAI:
            kwargs = {"api_key": api_key, "base_url": base_url}
            if model:
                kwargs["model"] = model
            return OpenAIClient(**kwargs)

        elif provider == LLMProvider.ANTHROPIC:
            kwargs = {"api_key": api_key}
            if model:
                kwargs["model"] = model
            return AnthropicClient(**kwargs)

        else:
            raise LLMClientError(
                f"Unsupported provider: {provider}",
                provider=str(provider)
            )
