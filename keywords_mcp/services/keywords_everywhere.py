"""Асинхронный клиент Keywords Everywhere API с повтором запросов при 429."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import httpx

from keywords_mcp.core.config import UpstreamConfig
from keywords_mcp.core.errors import (
    AuthenticationError,
    BadRequestError,
    MissingCredentialError,
    RateLimitError,
    UpstreamApiError,
)

logger = logging.getLogger("keywords_mcp.services.keywords_everywhere")

FormData = Dict[str, Union[str, List[str]]]
SleepFunc = Callable[[float], Awaitable[Any]]

# Подстрока в тексте 400-ответа -> подсказка пользователю.
_BAD_REQUEST_HINTS = (
    (("credit",), "You may need to add more credits to your Keywords Everywhere account."),
    (("subscription", "plan"), "This may be due to a subscription plan limitation. Please check your current plan."),
    (("limit", "rate"), "You may have hit a rate limit. Try again later."),
)


def bad_request_message(upstream_message: str) -> str:
    """Текст ошибки 400 с эвристической подсказкой, если она находится."""
    message = f"Bad Request (400): {upstream_message}"
    lowered = upstream_message.lower()
    for needles, hint in _BAD_REQUEST_HINTS:
        if any(needle in lowered for needle in needles):
            return f"{message}. {hint}"
    return message


class KeywordsEverywhereClient:
    """Один вызов инструмента = один HTTP-запрос к API (плюс повторы при 429).

    Ключ API передаётся в каждый вызов явно и нигде не сохраняется.
    """

    def __init__(
        self,
        config: UpstreamConfig,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self._config = config
        self._client = http_client
        self._owns_client = http_client is None
        self._sleep = sleep

    @property
    def config(self) -> UpstreamConfig:
        return self._config

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._config.timeout or None)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def call(
        self,
        endpoint: str,
        *,
        credential: Optional[str],
        form: Optional[FormData] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        if not credential:
            raise MissingCredentialError(
                "API key is not configured: set KEYWORDS_EVERYWHERE_API_KEY or pass an API key with the request"
            )

        url = f"{self._config.base_url}/{endpoint.lstrip('/')}"
        method = "POST" if form is not None or json_body is not None else "GET"
        headers = {
            "Authorization": f"Bearer {credential}",
            "Accept": "application/json",
        }

        attempt = 0
        while True:
            logger.info("Calling Keywords Everywhere API: %s %s", method, endpoint)
            t0 = time.time()
            try:
                response = await self._get_client().request(
                    method,
                    url,
                    headers=headers,
                    data=form,
                    json=json_body,
                )
            except httpx.HTTPError as exc:
                logger.error("Keywords Everywhere API call failed (%s): %s", endpoint, exc)
                raise UpstreamApiError(f"API Error (unknown): {exc}") from exc

            dt = (time.time() - t0) * 1000.0
            logger.info("API response status %s for %s in %.1f ms", response.status_code, endpoint, dt)

            if response.status_code == 429:
                if attempt < self._config.max_retries:
                    delay = self._config.backoff_base * (2 ** attempt)
                    logger.warning("Rate limited on %s, retrying in %.1f s (retry %d)", endpoint, delay, attempt + 1)
                    await self._sleep(delay)
                    attempt += 1
                    continue
                logger.error("Rate limit retries exhausted for %s", endpoint)
                raise RateLimitError(
                    "Rate limit exceeded (429): Too many requests. Please try again later.",
                    status_code=429,
                )

            if response.is_success:
                return self._parse_response(response)

            self._raise_for_status(endpoint, response)

    @staticmethod
    def _raise_for_status(endpoint: str, response: httpx.Response) -> None:
        status = response.status_code
        message = _extract_error_message(response)
        logger.error("Keywords Everywhere API error on %s: status=%s message=%s", endpoint, status, message)
        if status == 400:
            raise BadRequestError(bad_request_message(message), status_code=status)
        if status == 401:
            raise AuthenticationError("Authentication failed (401): Please check your API key", status_code=status)
        raise UpstreamApiError(f"API Error ({status}): {message}", status_code=status)

    @staticmethod
    def _parse_response(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except json.JSONDecodeError:
            return response.text


def _extract_error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return response.text or response.reason_phrase or "unknown error"
    if isinstance(body, dict):
        message = body.get("message") or body.get("error")
        if isinstance(message, str) and message:
            return message
    if isinstance(body, str) and body:
        return body
    return json.dumps(body, ensure_ascii=False)


__all__ = [
    "FormData",
    "KeywordsEverywhereClient",
    "bad_request_message",
]
