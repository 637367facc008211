# src/vitordo/llm/client.py

from __future__ import annotations

import logging
import time
from typing import Any

import httpx
import openai
from openai import AsyncOpenAI

from ..config import Settings, get_settings
from ..core.errors import (
    AuthError,
    CoreError,
    NetworkError,
    QuotaError,
    RequestTimeoutError,
    UnknownError,
    error_from_status,
)
from ..core.ports import ParseRequest, ParseResponse, UpdateRequest, UpdateResponse
from ..core.timeutil import local_now
from .payloads import (
    SYSTEM_PROMPT,
    build_parse_prompt,
    build_update_prompt,
    decode_parse_content,
    decode_update_content,
)

logger = logging.getLogger(__name__)

_BAD_MODELS: dict[str, float] = {}  # model -> retry_at (monotonic)

BAD_MODEL_COOLDOWN_SECONDS = 3600.0


def _is_auth_error(exc: Exception) -> bool:
    return exc.__class__.__name__ in {
        "AuthenticationError",
        "PermissionDeniedError",
        "UnauthorizedError",
    }


def _is_rate_limit_error(exc: Exception) -> bool:
    if isinstance(exc, openai.RateLimitError):
        return True
    return exc.__class__.__name__ in {"RateLimitError", "TooManyRequestsError"}


def _is_connection_error(exc: Exception) -> bool:
    return exc.__class__.__name__ in {
        "APIConnectionError",
        "APITimeoutError",
        "Timeout",
        "ConnectTimeout",
        "ReadTimeout",
        "WriteTimeout",
    }


def _is_not_found_error(exc: Exception) -> bool:
    # OpenAI-compatible SDK often uses NotFoundError for HTTP 404
    return exc.__class__.__name__ in {"NotFoundError"}


def to_core_error(exc: Exception) -> CoreError:
    """
    Map an SDK/transport exception onto the error taxonomy.

    Order matters: APITimeoutError is a subclass of APIConnectionError.
    """
    if isinstance(exc, CoreError):
        return exc

    message = str(exc).strip() or exc.__class__.__name__

    if isinstance(exc, openai.APITimeoutError):
        return RequestTimeoutError(message)
    if isinstance(exc, openai.APIConnectionError):
        return NetworkError(message)
    if isinstance(exc, httpx.TimeoutException):
        return RequestTimeoutError(message)
    if isinstance(exc, httpx.TransportError):
        return NetworkError(message)

    if isinstance(exc, openai.APIStatusError):
        status = int(exc.status_code)
        body_code = getattr(exc, "code", None)
        if status == 429 and body_code == "insufficient_quota":
            return QuotaError(message, code="QUOTA_EXCEEDED", status_code=status)
        return error_from_status(status, message)

    if _is_auth_error(exc):
        return AuthError(message)
    if _is_rate_limit_error(exc):
        return QuotaError(message, code="RATE_LIMIT")
    if _is_connection_error(exc):
        return NetworkError(message)

    return UnknownError(message, details={"exception": exc.__class__.__name__})


class OpenAICompatibleLLMClient:
    """
    Task collaborator backed by any OpenAI-compatible chat completions endpoint.

    Behavior:
    - Tries models in the order from settings (VITORDO_LLM_MODELS).
    - 404 (model not available) -> park the model for an hour, try next.
    - Rate limit / network issues -> try next.
    - Auth issues -> fail fast (no retries across models).
    - SDK-level retries are disabled; the retry controller paces retries.
    """

    def __init__(self, settings: Settings | None = None, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings or get_settings()

        api_key = self._settings.llm_api_key
        base_url = self._settings.llm_base_url or ""

        if client is None:
            if not api_key or not str(api_key).strip():
                raise RuntimeError("LLM API key is not set. Set VITORDO_LLM_API_KEY in your .env.")
            if not base_url.strip():
                raise RuntimeError("LLM base URL is not set. Set VITORDO_LLM_BASE_URL in your .env.")

            client = AsyncOpenAI(
                base_url=base_url,
                api_key=str(api_key),
                timeout=httpx.Timeout(
                    connect=self._settings.llm_connect_timeout_seconds,
                    read=self._settings.llm_read_timeout_seconds,
                    write=10.0,
                    pool=self._settings.llm_connect_timeout_seconds,
                ),
                max_retries=0,
            )
        self._client = client

    async def parse(self, request: ParseRequest) -> ParseResponse:
        prompt = build_parse_prompt(request.input, request.context, now=local_now())
        content = await self._complete(prompt, temperature=0.3, max_tokens=1000)
        return decode_parse_content(content, original_input=request.input)

    async def update(self, request: UpdateRequest) -> UpdateResponse:
        prompt = build_update_prompt(request.input, request.context)
        content = await self._complete(prompt, temperature=0.2, max_tokens=500)
        return decode_update_content(content)

    async def aclose(self) -> None:
        await self._client.close()

    async def _create(self, *, model: str, prompt: str, temperature: float, max_tokens: int) -> Any:
        headers: dict[str, str] = dict(self._settings.extra_headers or {})
        return await self._client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
            response_format={"type": "json_object"},
            extra_headers=headers or None,
        )

    async def _complete(self, prompt: str, *, temperature: float, max_tokens: int) -> str | None:
        models = [m.strip() for m in (self._settings.llm_models or []) if m and m.strip()]
        if not models:
            raise UnknownError("LLM model list is empty. Set VITORDO_LLM_MODELS in your .env.", code="INVALID_REQUEST")

        last_error: Exception | None = None
        now = time.monotonic()

        for model in models:
            retry_at = _BAD_MODELS.get(model)
            if retry_at is not None and retry_at > now:
                continue

            logger.info("LLM: trying model=%s", model)
            t0 = time.monotonic()
            try:
                response = await self._create(
                    model=model,
                    prompt=prompt,
                    temperature=temperature,
                    max_tokens=max_tokens,
                )
            except Exception as e:
                last_error = e

                if _is_auth_error(e):
                    raise to_core_error(e) from e

                if _is_not_found_error(e):
                    _BAD_MODELS[model] = time.monotonic() + BAD_MODEL_COOLDOWN_SECONDS
                    logger.info("LLM: model not available (404): %s", model)
                    continue

                if _is_rate_limit_error(e):
                    logger.info("LLM: rate-limited on model=%s, trying next", model)
                    continue

                if _is_connection_error(e):
                    logger.info("LLM: network/timeout error on model=%s, trying next", model)
                    continue

                logger.info("LLM: error on model=%s (%s), trying next", model, e.__class__.__name__)
                continue

            logger.info("LLM: response from model=%s (%.2fs)", model, time.monotonic() - t0)
            try:
                return response.choices[0].message.content
            except (AttributeError, IndexError) as e:
                raise UnknownError(f"Malformed completion from model {model}", code="INVALID_RESPONSE") from e

        if last_error is not None:
            raise to_core_error(last_error) from last_error

        raise UnknownError("All LLM models failed (none available).")
