"""
OpenAI wrapper used as the optional text-generation collaborator.

Features:
    - Exponential backoff for rate limits, 5xx responses and timeouts
    - Token usage tracking
    - Explicit "unavailable" signal when no API key is configured

Callers decide what to do when generation fails; see
scenario_interpreter.interpret_scenario for the fallback path.
"""

import time
import asyncio
from typing import Optional

from openai import (
    AsyncOpenAI,
    APIConnectionError,
    APITimeoutError,
    InternalServerError,
    RateLimitError,
)

from .observability import logger, log_openai_call


RETRYABLE_ERRORS = (RateLimitError, APITimeoutError, APIConnectionError, InternalServerError)


class AIServiceUnavailable(Exception):
    """Raised when the text-generation collaborator cannot be used."""


class AIService:
    """
    Chat-completion client with retry and usage accounting.

    The client is created only for a key that looks valid ("sk-" prefix);
    otherwise is_configured is False and generate() raises
    AIServiceUnavailable.
    """

    MAX_RETRIES = 3
    INITIAL_DELAY = 1.0
    MAX_DELAY = 60.0

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o",
        timeout: float = 30.0,
    ):
        self.api_key = api_key.strip() if api_key else None
        self.model = model
        self.timeout = timeout
        self.client: Optional[AsyncOpenAI] = None

        self.total_tokens_used = 0
        self.request_count = 0

        if self.api_key and self.api_key.startswith("sk-"):
            # SDK retries are disabled; backoff is handled in _complete
            self.client = AsyncOpenAI(api_key=self.api_key, max_retries=0)
            logger.info("OpenAI client initialized", model=self.model)
        else:
            logger.info("OpenAI API key not configured, scenario analysis uses fallback mode")

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    def get_usage_stats(self) -> dict:
        return {
            "total_tokens": self.total_tokens_used,
            "request_count": self.request_count,
            "avg_tokens_per_request": (
                self.total_tokens_used / self.request_count
                if self.request_count > 0 else 0
            )
        }

    async def _complete(self, **kwargs):
        """
        One chat completion with exponential backoff.

        Rate limits wait twice as long as other retryable errors.
        Non-retryable errors propagate immediately.
        """
        delay = self.INITIAL_DELAY

        for attempt in range(self.MAX_RETRIES + 1):
            try:
                return await self.client.chat.completions.create(model=self.model, **kwargs)
            except RETRYABLE_ERRORS as e:
                if attempt == self.MAX_RETRIES:
                    raise
                wait_time = delay * (2 if isinstance(e, RateLimitError) else 1)
                logger.warning(
                    "OpenAI call failed, retrying",
                    error=type(e).__name__,
                    wait_s=f"{wait_time:.1f}",
                    attempt=f"{attempt + 1}/{self.MAX_RETRIES + 1}",
                )
                await asyncio.sleep(wait_time)
                delay = min(delay * 2, self.MAX_DELAY)

    async def generate(self, prompt: str, system: Optional[str] = None, json_mode: bool = False) -> str:
        """
        Generate text for a single prompt.

        Args:
            prompt: User prompt.
            system: Optional system message.
            json_mode: Ask the model for a JSON object response.

        Returns:
            The completion text ("" if the model returned none).

        Raises:
            AIServiceUnavailable: No client configured.
        """
        if not self.client:
            raise AIServiceUnavailable("OpenAI API key not configured")

        messages = [{"role": "system", "content": system}] if system else []
        messages.append({"role": "user", "content": prompt})

        extra = {"response_format": {"type": "json_object"}} if json_mode else {}

        start = time.perf_counter()
        response = await self._complete(messages=messages, timeout=self.timeout, **extra)
        duration_ms = (time.perf_counter() - start) * 1000

        tokens = response.usage.total_tokens if response.usage else 0
        self.total_tokens_used += tokens
        self.request_count += 1
        log_openai_call("chat.completions", tokens, duration_ms)

        return response.choices[0].message.content or ""

    async def check_connection(self) -> bool:
        """Check if OpenAI API is accessible."""
        if not self.client:
            return False
        try:
            await self.client.models.list()
            return True
        except Exception as e:
            logger.warning("OpenAI connectivity check failed", error=type(e).__name__)
            return False
