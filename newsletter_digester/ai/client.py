from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

import httpx

from newsletter_digester.errors import (
    ERROR_HTTP,
    ERROR_TIMEOUT,
    ERROR_UNKNOWN,
    FetchError,
    NotConfiguredError,
    ParseError,
    redact_detail,
)
from newsletter_digester.storage.db import (
    CONF_OPENAI_API_KEY,
    CONF_OPENAI_BASE_URL,
    CONF_OPENAI_MAX_TOKENS,
    CONF_OPENAI_MODEL,
    CONF_OPENAI_TEMPERATURE,
    CONFIG_DEFAULTS,
    Storage,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AIConfig:
    base_url: str
    api_key: str
    model: str
    temperature: float
    max_tokens: int | None


def _parse_float(value: str | None, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _parse_optional_int(value: str | None) -> int | None:
    value = (value or "").strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        logger.warning("ignoring invalid max tokens setting %r", value)
        return None


def _extract_content(data: dict) -> str | None:
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return None
    message = choices[0].get("message") or {}
    content = message.get("content")
    return content if isinstance(content, str) else None


class TextGenerationClient:
    """OpenAI-compatible chat completion client.

    Settings are read from the store on every call so a changed key, model or
    base URL applies to the next request without a restart.
    """

    def __init__(
        self,
        store: Storage,
        timeout_seconds: int = 120,
        client: httpx.AsyncClient | None = None,
        observe_latency: Callable[[float], None] | None = None,
    ) -> None:
        self._store = store
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))
        self._observe_latency = observe_latency

    async def aclose(self) -> None:
        await self._client.aclose()

    async def load_config(self) -> AIConfig:
        values = await self._store.get_all_config()
        return AIConfig(
            base_url=(values.get(CONF_OPENAI_BASE_URL) or CONFIG_DEFAULTS[CONF_OPENAI_BASE_URL]).strip(),
            api_key=(values.get(CONF_OPENAI_API_KEY) or "").strip(),
            model=(values.get(CONF_OPENAI_MODEL) or CONFIG_DEFAULTS[CONF_OPENAI_MODEL]).strip(),
            temperature=_parse_float(values.get(CONF_OPENAI_TEMPERATURE), 0.3),
            max_tokens=_parse_optional_int(values.get(CONF_OPENAI_MAX_TOKENS)),
        )

    async def complete(
        self,
        messages: list[dict[str, str]],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        cfg = await self.load_config()
        if not cfg.api_key:
            raise NotConfiguredError("OpenAI API key not configured")

        payload: dict = {
            "model": model or cfg.model,
            "messages": messages,
            "temperature": cfg.temperature if temperature is None else temperature,
        }
        limit = max_tokens if max_tokens is not None else cfg.max_tokens
        if limit is not None:
            payload["max_tokens"] = limit

        url = cfg.base_url.rstrip("/") + "/chat/completions"
        started = time.perf_counter()
        try:
            resp = await self._client.post(
                url,
                json=payload,
                headers={
                    "Authorization": f"Bearer {cfg.api_key}",
                    "Content-Type": "application/json",
                },
            )
            resp.raise_for_status()
        except httpx.TimeoutException as e:
            raise FetchError(ERROR_TIMEOUT, redact_detail(str(e) or url)) from e
        except httpx.HTTPStatusError as e:
            raise FetchError(ERROR_HTTP, f"{e.response.status_code} from chat completions") from e
        except (httpx.TransportError, httpx.InvalidURL) as e:
            raise FetchError(ERROR_HTTP, redact_detail(str(e) or url)) from e
        except httpx.HTTPError as e:
            raise FetchError(ERROR_UNKNOWN, redact_detail(str(e) or url)) from e
        finally:
            if self._observe_latency is not None:
                self._observe_latency(time.perf_counter() - started)

        try:
            data = resp.json()
        except ValueError as e:
            raise ParseError("chat completion response is not JSON") from e

        content = _extract_content(data) if isinstance(data, dict) else None
        if content is None:
            raise ParseError("chat completion response has no message content")

        logger.debug("ai completion model=%s chars=%s", payload["model"], len(content))
        return content
