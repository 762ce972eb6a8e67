"""Chat-completion client for insight generation.

Talks to any OpenAI-compatible ``/chat/completions`` endpoint (Groq by
default). Each HTTP attempt first takes a slot from the injected rate
limiter. Failed calls are not retried unless ``max_attempts`` > 1, and then
only for 5xx responses and timeouts; 429 is never retried.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

import certifi
import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from focuslens.config import LLMPreset, LLMPresets, Settings, settings as default_settings
from focuslens.errors import FatalStartupError, InsightGenerationError
from focuslens.infra.rate_limiter import FixedWindowRateLimiter

logger = structlog.get_logger()

_RETRYABLE_STATUS_CODES = frozenset({500, 502, 503, 504})


def _is_retryable_llm_error(exc: BaseException) -> bool:
    if isinstance(exc, InsightGenerationError) and exc.status_code in _RETRYABLE_STATUS_CODES:
        return True
    if isinstance(exc, httpx.ReadTimeout | httpx.ConnectTimeout | httpx.PoolTimeout):
        return True
    return False


@dataclass
class CompletionResponse:
    """Response from chat completion."""

    content: str
    model: str
    usage: dict[str, int] = field(default_factory=dict)

    @property
    def total_tokens(self) -> int:
        return int(self.usage.get("total_tokens") or 0)


class CompletionClient:
    """HTTP client for the completion API.

    ``transport`` lets tests swap in ``httpx.MockTransport``.
    """

    def __init__(
        self,
        limiter: FixedWindowRateLimiter,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        max_attempts: int = 1,
    ) -> None:
        self._settings = settings or default_settings
        api_key = self._settings.llm_api_key
        if not api_key:
            raise FatalStartupError(
                "FOCUSLENS_LLM_API_KEY not set. The insight worker cannot start without it."
            )

        self._limiter = limiter
        self._max_attempts = max_attempts
        self.model = self._settings.llm_model

        client_kwargs: dict[str, Any] = {
            "base_url": self._settings.llm_base_url,
            "headers": {
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            "timeout": httpx.Timeout(
                connect=5.0,
                read=self._settings.llm_read_timeout,
                write=5.0,
                pool=15.0,
            ),
            "limits": httpx.Limits(max_connections=10, max_keepalive_connections=5),
        }
        if transport is not None:
            client_kwargs["transport"] = transport
        else:
            client_kwargs["verify"] = certifi.where()
        self._client = httpx.AsyncClient(**client_kwargs)

        logger.info(
            "llm_client_initialized",
            base_url=self._settings.llm_base_url,
            model=self.model,
        )

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("llm_client_closed")

    async def complete(
        self,
        prompt: str,
        preset: LLMPreset = LLMPresets.INSIGHT,
    ) -> CompletionResponse:
        """Single-turn completion. Raises InsightGenerationError on failure."""
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": preset.temperature,
            "max_tokens": preset.max_tokens,
        }

        @retry(
            retry=retry_if_exception(_is_retryable_llm_error),
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=4),
            reraise=True,
        )
        async def _do_request() -> CompletionResponse:
            await self._limiter.acquire()

            try:
                t0 = time.monotonic()
                response = await self._client.post("/chat/completions", json=payload)
                llm_ms = round((time.monotonic() - t0) * 1000)
                response.raise_for_status()
                data = response.json()

                content = ""
                choices = data.get("choices") or []
                if choices:
                    message = choices[0].get("message") or {}
                    content = message.get("content") or ""

                result = CompletionResponse(
                    content=content,
                    model=data.get("model") or self.model,
                    usage=data.get("usage") or {},
                )
                logger.info(
                    "chat_completion_success",
                    model=result.model,
                    llm_ms=llm_ms,
                    content_length=len(result.content),
                    total_tokens=result.total_tokens,
                )
                return result

            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                logger.error(
                    "chat_completion_failed",
                    status_code=status,
                    response=e.response.text[:500],
                )
                raise InsightGenerationError(
                    f"Chat completion failed: {status}",
                    status_code=status,
                ) from e
            except (httpx.ReadTimeout, httpx.ConnectTimeout, httpx.PoolTimeout) as e:
                logger.warning("chat_completion_timeout", error=str(e))
                raise
            except (httpx.HTTPError, ValueError) as e:
                logger.error("chat_completion_error", error=str(e))
                raise InsightGenerationError(f"Chat completion error: {e}") from e

        try:
            return await _do_request()
        except httpx.TimeoutException as e:
            raise InsightGenerationError(f"Chat completion timed out: {e}") from e
