from __future__ import annotations

import logging
import re
from typing import Any

import httpx

from newsletter_digester.errors import (
    ERROR_HTTP,
    ERROR_TIMEOUT,
    ERROR_UNKNOWN,
    ChannelError,
    FetchError,
    redact_detail,
)
from newsletter_digester.notify.render import render_digest, render_post_blocks
from newsletter_digester.storage.db import (
    CONF_SLACK_BOT_ICON,
    CONF_SLACK_BOT_NAME,
    CONF_SLACK_CHANNELS,
    CONF_SLACK_WEBHOOK_URL,
    Storage,
)
from newsletter_digester.storage.types import DigestItem, Post


logger = logging.getLogger(__name__)


_CHANNEL_SPLIT_RE = re.compile(r"[,\n]")


def normalize_channel(name: str) -> str:
    return (name or "").strip().lstrip("#").strip()


def parse_channels(raw: str | None) -> list[str]:
    channels = [normalize_channel(part) for part in _CHANNEL_SPLIT_RE.split(raw or "")]
    return [c for c in channels if c]


class NotificationDispatcher:
    def __init__(self, store: Storage, client: httpx.AsyncClient) -> None:
        self._store = store
        self._client = client

    async def _apply_bot_identity(self, payload: dict[str, Any]) -> None:
        bot_name = (await self._store.get_config(CONF_SLACK_BOT_NAME) or "").strip()
        bot_icon = (await self._store.get_config(CONF_SLACK_BOT_ICON) or "").strip()
        if bot_name:
            payload["username"] = bot_name
        if bot_icon:
            payload["icon_emoji"] = bot_icon

    async def _post(self, webhook_url: str, payload: dict[str, Any]) -> None:
        try:
            resp = await self._client.post(webhook_url, json=payload)
            resp.raise_for_status()
        except httpx.TimeoutException as e:
            raise FetchError(ERROR_TIMEOUT, "webhook timed out") from e
        except httpx.HTTPStatusError as e:
            raise FetchError(ERROR_HTTP, f"{e.response.status_code} from webhook") from e
        except (httpx.TransportError, httpx.InvalidURL) as e:
            raise FetchError(ERROR_HTTP, redact_detail(str(e) or "webhook transport error")) from e
        except httpx.HTTPError as e:
            raise FetchError(ERROR_UNKNOWN, redact_detail(str(e) or "webhook error")) from e

    async def notify(self, items: list[DigestItem]) -> bool:
        """Send one digest for items. Returns False when no webhook is configured."""
        webhook_url = (await self._store.get_config(CONF_SLACK_WEBHOOK_URL) or "").strip()
        if not webhook_url:
            logger.info("slack webhook not configured, digest not sent")
            return False
        if not items:
            return False

        payload: dict[str, Any] = {"text": render_digest(items), "mrkdwn": True}
        await self._apply_bot_identity(payload)

        logger.info("sending digest of %s post(s) to slack", len(items))
        await self._post(webhook_url, payload)
        return True

    async def notify_post(self, post: Post | DigestItem, channel: str | None = None) -> bool:
        target = None
        if channel is not None:
            configured = parse_channels(await self._store.get_config(CONF_SLACK_CHANNELS))
            if not configured:
                raise ChannelError("no slack channels configured")
            target = normalize_channel(channel)
            if target not in configured:
                raise ChannelError(f"unknown channel: {target}")

        webhook_url = (await self._store.get_config(CONF_SLACK_WEBHOOK_URL) or "").strip()
        if not webhook_url:
            logger.info("slack webhook not configured, post %s not sent", getattr(post, "id", None) or post.url)
            return False

        payload = render_post_blocks(post)
        if target:
            payload["channel"] = f"#{target}"
        await self._apply_bot_identity(payload)

        logger.info("sending post to slack channel=%s", target or "default")
        await self._post(webhook_url, payload)
        return True
