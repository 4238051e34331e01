"""OpenAI chat client for the extraction prompts.

Every call asks for a JSON object. Responses are cached in Redis by prompt
hash so a redelivered extraction batch does not pay for the same page twice.
"""

import hashlib
import json
import logging
from typing import Any, Dict, List, Optional

import redis.asyncio as redis
from openai import AsyncOpenAI

from catalog_pipeline.config import settings
from catalog_pipeline.errors import ConfigurationError, ExtractionError
from catalog_pipeline.metrics import llm_tokens_total

logger = logging.getLogger(__name__)

CACHE_PREFIX = "llm_cache:"


def strip_code_fence(text: str) -> str:
    """Remove a ```json ... ``` wrapper some models add despite JSON mode."""
    text = text.strip()
    if text.startswith("```"):
        text = text[3:]
        if text.startswith("json"):
            text = text[4:]
        if text.endswith("```"):
            text = text[:-3]
    return text.strip()


class LLMService:
    """
    JSON-mode completions against OpenAI with an optional Redis cache.

    Usage:
        data = await llm_service.complete_json(prompt, max_tokens=1200)
    """

    def __init__(self, model: Optional[str] = None):
        self.model = model or settings.llm_model
        self._client: Optional[AsyncOpenAI] = None
        self._redis: Optional[redis.Redis] = None

    async def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not settings.openai_api_key:
                raise ConfigurationError("OpenAI API key not configured")
            self._client = AsyncOpenAI(
                api_key=settings.openai_api_key,
                timeout=settings.llm_timeout_seconds,
            )
        return self._client

    async def _get_redis(self) -> Optional[redis.Redis]:
        """Get or create the cache connection; None when caching is off or Redis is down."""
        if not settings.llm_cache_enabled:
            return None
        if self._redis is None:
            try:
                self._redis = await redis.from_url(
                    settings.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                )
            except Exception as e:
                logger.warning(f"LLM cache unavailable: {e}")
                return None
        return self._redis

    def cache_key(self, messages: List[Dict[str, str]], max_tokens: int) -> str:
        payload = json.dumps([self.model, max_tokens, messages], sort_keys=True)
        return CACHE_PREFIX + hashlib.sha256(payload.encode("utf-8")).hexdigest()

    async def _cached(self, key: str) -> Optional[str]:
        client = await self._get_redis()
        if client is None:
            return None
        try:
            return await client.get(key)
        except Exception as e:
            logger.warning(f"LLM cache read failed: {e}")
            return None

    async def _remember(self, key: str, value: str) -> None:
        client = await self._get_redis()
        if client is None:
            return
        try:
            await client.setex(key, settings.llm_cache_ttl_seconds, value)
        except Exception as e:
            logger.warning(f"LLM cache write failed: {e}")

    async def complete(
        self,
        prompt: str,
        system_prompt: str = "",
        max_tokens: Optional[int] = None,
        use_cache: bool = True,
    ) -> str:
        """
        Run one JSON-mode chat completion and return the raw message text.

        Args:
            prompt: User message
            system_prompt: Optional system message
            max_tokens: Completion ceiling (defaults to settings.llm_max_tokens)
            use_cache: Read and write the Redis response cache

        Raises:
            ConfigurationError: No API key configured
            ExtractionError: The provider call failed
        """
        max_tokens = max_tokens or settings.llm_max_tokens
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        key = self.cache_key(messages, max_tokens)
        if use_cache:
            cached = await self._cached(key)
            if cached:
                logger.debug(f"LLM cache hit {key[-12:]}")
                return cached

        client = await self._get_client()
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=settings.llm_temperature,
                max_tokens=max_tokens,
                response_format={"type": "json_object"},
            )
        except Exception as e:
            logger.error(f"LLM API call failed: {e}")
            raise ExtractionError(f"LLM call failed: {e}") from e

        if response.usage:
            llm_tokens_total.labels(kind="prompt").inc(response.usage.prompt_tokens)
            llm_tokens_total.labels(kind="completion").inc(response.usage.completion_tokens)

        text = response.choices[0].message.content or ""
        if use_cache and text:
            await self._remember(key, text)
        return text

    async def complete_json(
        self,
        prompt: str,
        system_prompt: str = "",
        max_tokens: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Like complete(), parsed into a dict.

        Raises:
            ExtractionError: The call failed or the reply is not a JSON object
        """
        text = strip_code_fence(await self.complete(prompt, system_prompt, max_tokens)) or "{}"
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as e:
            logger.error(f"Unparseable LLM response: {e}; starts {text[:200]!r}")
            raise ExtractionError(f"Invalid JSON response from LLM: {e}") from e

        if not isinstance(parsed, dict):
            raise ExtractionError("LLM response is not a JSON object")
        return parsed

    async def close(self) -> None:
        if self._redis:
            await self._redis.close()
            self._redis = None
        if self._client:
            await self._client.close()
            self._client = None


llm_service = LLMService()
