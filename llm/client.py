"""Multi-provider LLM client with fallback support"""

import asyncio
from typing import Any, Dict, List, Optional

import anthropic
import google.genai as genai
import openai

from config import Settings
from core.enums import LLMProvider
from core.exceptions import LLMError
from core.logging_config import get_logger

logger = get_logger(__name__)


class LLMClient:
    """Multi-provider LLM client with automatic fallback

    Providers are tried in ``LLM_PROVIDER_PRIORITY`` order; each gets
    ``LLM_MAX_RETRIES`` retries with exponential backoff before the next
    provider is tried.
    """

    def __init__(self, settings: Settings, providers: Optional[Dict[LLMProvider, Any]] = None):
        self.settings = settings
        self.providers = providers if providers is not None else self._initialize_providers()
        self.provider_priority = settings.get_llm_provider_priority()
        self.max_retries = settings.LLM_MAX_RETRIES
        self.retry_delay = settings.LLM_RETRY_DELAY
        self.timeout = settings.LLM_TIMEOUT

        if not self.providers:
            raise LLMError(
                "No LLM providers available. "
                "Please configure at least one API key."
            )

    def _initialize_providers(self) -> dict:
        """Initialize available LLM providers"""
        providers = {}

        if self.settings.ANTHROPIC_API_KEY:
            providers[LLMProvider.ANTHROPIC] = anthropic.AsyncAnthropic(
                api_key=self.settings.ANTHROPIC_API_KEY,
                timeout=self.settings.LLM_TIMEOUT
            )

        if self.settings.OPENAI_API_KEY:
            providers[LLMProvider.OPENAI] = openai.AsyncOpenAI(
                api_key=self.settings.OPENAI_API_KEY,
                timeout=self.settings.LLM_TIMEOUT
            )

        if self.settings.GOOGLE_API_KEY:
            providers[LLMProvider.GEMINI] = genai.Client(api_key=self.settings.GOOGLE_API_KEY)

        return providers

    def _get_available_providers(self) -> List[LLMProvider]:
        """Get list of available providers in priority order"""
        available = []
        for provider_name in self.provider_priority:
            try:
                provider = LLMProvider(provider_name)
            except ValueError:
                logger.warning("llm_unknown_provider", provider=provider_name)
                continue
            if provider in self.providers:
                available.append(provider)
        return available

    async def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None
    ) -> str:
        """
        Send completion request with automatic fallback

        Args:
            prompt: User prompt
            system: System prompt
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature

        Returns:
            Response text

        Raises:
            LLMError: If all providers fail
        """
        max_tokens = max_tokens or self.settings.LLM_MAX_TOKENS
        if temperature is None:
            temperature = self.settings.LLM_TEMPERATURE
        available_providers = self._get_available_providers()

        if not available_providers:
            raise LLMError("No available LLM providers")

        last_error = None

        # Try each provider in priority order
        for provider in available_providers:
            for attempt in range(self.max_retries + 1):
                try:
                    return await asyncio.wait_for(
                        self._call_provider(
                            provider=provider,
                            prompt=prompt,
                            system=system,
                            max_tokens=max_tokens,
                            temperature=temperature
                        ),
                        timeout=self.timeout,
                    )
                except Exception as e:
                    last_error = e
                    logger.warning(
                        "llm_call_failed",
                        provider=provider.value,
                        attempt=attempt + 1,
                        error=str(e) or type(e).__name__,
                    )
                    if attempt < self.max_retries:
                        await asyncio.sleep(self.retry_delay * (2 ** attempt))

        # All providers failed
        raise LLMError(
            f"All LLM providers failed. Last error: {last_error}",
            provider=available_providers[-1].value,
            retries=self.max_retries
        )

    async def _call_provider(
        self,
        provider: LLMProvider,
        prompt: str,
        system: Optional[str],
        max_tokens: int,
        temperature: float
    ) -> str:
        """Call specific LLM provider"""
        system_prompt = system or self._default_system_prompt()

        if provider == LLMProvider.ANTHROPIC:
            return await self._call_anthropic(prompt, system_prompt, max_tokens, temperature)
        elif provider == LLMProvider.OPENAI:
            return await self._call_openai(prompt, system_prompt, max_tokens, temperature)
        elif provider == LLMProvider.GEMINI:
            return await self._call_gemini(prompt, system_prompt, max_tokens, temperature)
        else:
            raise LLMError(f"Unknown provider: {provider}")

    async def _call_anthropic(self, prompt: str, system: str, max_tokens: int, temperature: float) -> str:
        """Call Anthropic Claude API"""
        client = self.providers[LLMProvider.ANTHROPIC]
        response = await client.messages.create(
            model=self.settings.ANTHROPIC_MODEL,
            max_tokens=max_tokens,
            system=system,
            messages=[{"role": "user", "content": prompt}],
            temperature=temperature
        )
        return response.content[0].text

    async def _call_openai(self, prompt: str, system: str, max_tokens: int, temperature: float) -> str:
        """Call OpenAI API"""
        client = self.providers[LLMProvider.OPENAI]
        response = await client.chat.completions.create(
            model=self.settings.OPENAI_MODEL,
            max_tokens=max_tokens,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt}
            ],
            temperature=temperature
        )
        content = response.choices[0].message.content
        if not content:
            raise LLMError("Empty response", provider=LLMProvider.OPENAI.value)
        return content

    async def _call_gemini(self, prompt: str, system: str, max_tokens: int, temperature: float) -> str:
        """Call Google Gemini API"""
        client = self.providers[LLMProvider.GEMINI]
        response = await client.aio.models.generate_content(
            model=self.settings.GEMINI_MODEL_ID,
            contents=f"{system}\n\n{prompt}",
            config={
                "max_output_tokens": max_tokens,
                "temperature": temperature
            }
        )
        return response.text

    def _default_system_prompt(self) -> str:
        """Default system prompt for LLM tasks"""
        return (
            "You are a financial data assistant. "
            "Respond only with valid JSON when requested. "
            "No explanations or markdown unless specifically asked."
        )
