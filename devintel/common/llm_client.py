"""
Provider-agnostic chat-completion client for devintel pipelines.

Supports Anthropic, OpenAI, and Google Gemini behind a shared message-list
interface. Calls are synchronous SDK calls; ``acomplete`` runs them on a
worker thread so several generations can be awaited concurrently.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from typing import Dict, List, Optional

logger = logging.getLogger("devintel.common.llm_client")

Message = Dict[str, str]


def _split_system(messages: List[Message]) -> tuple:
    system_parts = [m["content"] for m in messages if m.get("role") == "system"]
    chat = [m for m in messages if m.get("role") != "system"]
    return "\n\n".join(system_parts), chat


class LLMClient:
    """Unified chat-completion client across LLM providers.

    Args:
        provider: "anthropic", "openai" or "google"
        model: Provider model name
        anthropic_api_key / openai_api_key / google_api_key: Credentials; the
            one matching ``provider`` must be set for the client to be available.
        openai_base_url: Optional OpenAI-compatible endpoint (e.g. an Azure proxy)
    """

    def __init__(
        self,
        provider: str = "openai",
        model: str = "",
        anthropic_api_key: Optional[str] = None,
        openai_api_key: Optional[str] = None,
        google_api_key: Optional[str] = None,
        openai_base_url: Optional[str] = None,
    ) -> None:
        self.provider = (provider or "openai").lower()
        self.model = model
        self._client = None
        self._google_models: Dict[str, object] = {}

        if self.provider == "anthropic":
            if not anthropic_api_key:
                logger.info("%s API key not provided, LLM client unavailable", self.provider)
                return
            try:
                import anthropic

                self._client = anthropic.Anthropic(api_key=anthropic_api_key)
            except ImportError:
                logger.warning("anthropic package not installed")
            except Exception as e:
                logger.warning("Failed to initialize Anthropic client: %s", e)
            return

        if self.provider == "openai":
            if not openai_api_key:
                logger.info("%s API key not provided, LLM client unavailable", self.provider)
                return
            try:
                from openai import OpenAI

                self._client = OpenAI(api_key=openai_api_key, base_url=openai_base_url or None)
            except ImportError:
                logger.warning("openai package not installed")
            except Exception as e:
                logger.warning("Failed to initialize OpenAI client: %s", e)
            return

        if self.provider == "google":
            if not google_api_key:
                logger.info("%s API key not provided, LLM client unavailable", self.provider)
                return
            try:
                import google.generativeai as genai

                genai.configure(api_key=google_api_key)
                self._client = genai  # module; models are cached per system prompt
            except ImportError:
                logger.warning("google-generativeai package not installed")
            except Exception as e:
                logger.warning("Failed to initialize Gemini client: %s", e)
            return

        logger.warning("Unsupported LLM provider: %s", self.provider)

    @classmethod
    def from_config(cls, llm_config) -> "LLMClient":
        models = {
            "anthropic": llm_config.anthropic_model,
            "openai": llm_config.openai_model,
            "google": llm_config.google_model,
        }
        return cls(
            provider=llm_config.provider,
            model=models.get(llm_config.provider, ""),
            anthropic_api_key=llm_config.anthropic_api_key,
            openai_api_key=llm_config.openai_api_key,
            google_api_key=llm_config.google_api_key,
            openai_base_url=llm_config.openai_base_url,
        )

    @property
    def is_available(self) -> bool:
        return self._client is not None

    def complete(
        self,
        messages: List[Message],
        *,
        max_tokens: int = 2000,
        temperature: float = 0.0,
        timeout: float = 60.0,
    ) -> str:
        """Run one chat completion and return the stripped text."""
        if not self.is_available:
            raise RuntimeError("LLM client is not available")

        if self.provider == "anthropic":
            system, chat = _split_system(messages)
            kwargs = {}
            if system:
                kwargs["system"] = system
            response = self._client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                temperature=temperature,
                messages=chat,
                timeout=timeout,
                **kwargs,
            )
            return response.content[0].text.strip()

        if self.provider == "openai":
            response = self._client.chat.completions.create(
                model=self.model,
                max_tokens=max_tokens,
                temperature=temperature,
                messages=messages,
                timeout=timeout,
            )
            return (response.choices[0].message.content or "").strip()

        if self.provider == "google":
            system, chat = _split_system(messages)
            cache_key = hashlib.md5(system.encode()).hexdigest()
            if cache_key not in self._google_models:
                kwargs = {"model_name": self.model}
                if system:
                    kwargs["system_instruction"] = system
                self._google_models[cache_key] = self._client.GenerativeModel(**kwargs)
            model = self._google_models[cache_key]
            response = model.generate_content(
                "\n\n".join(m["content"] for m in chat),
                generation_config={"max_output_tokens": max_tokens, "temperature": temperature},
                request_options={"timeout": timeout},
            )
            return response.text.strip()

        raise RuntimeError(f"Unsupported LLM provider: {self.provider}")

    async def acomplete(
        self,
        messages: List[Message],
        *,
        max_tokens: int = 2000,
        temperature: float = 0.0,
        timeout: float = 60.0,
    ) -> str:
        return await asyncio.to_thread(
            self.complete,
            messages,
            max_tokens=max_tokens,
            temperature=temperature,
            timeout=timeout,
        )
