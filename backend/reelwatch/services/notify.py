"""
Ops alerts for daily runs: Telegram, throttled per title.

Env:
  TELEGRAM_BOT_TOKEN, TELEGRAM_CHAT_ID

Alerts never raise: a failed alert is logged and dropped.
"""
from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from reelwatch.settings import Settings

logger = logging.getLogger(__name__)

_throttle: dict[str, float] = {}
THROTTLE_SEC = 15 * 60


def _should_send(key: str) -> bool:
    now = time.monotonic()
    last = _throttle.get(key)
    if last is not None and now - last < THROTTLE_SEC:
        return False
    _throttle[key] = now
    return True


async def _send_telegram(
    settings: Settings, text: str, *, transport: httpx.AsyncBaseTransport | None = None
) -> bool:
    token, chat_id = settings.telegram_bot_token, settings.telegram_chat_id
    if not token or not chat_id:
        logger.debug("[notify] Telegram not configured, skipping")
        return False
    url = f"https://api.telegram.org/bot{token}/sendMessage"
    try:
        async with httpx.AsyncClient(timeout=10, transport=transport) as client:
            r = await client.post(url, json={
                "chat_id": chat_id,
                "text": text[:4000],
                "parse_mode": "HTML",
                "disable_web_page_preview": True,
            })
            if r.status_code == 200:
                return True
            logger.warning(f"[notify] Telegram API {r.status_code}: {r.text[:200]}")
    except httpx.HTTPError as e:
        logger.warning(f"[notify] Telegram send failed: {e}")
    return False


async def notify_run_result(
    settings: Settings, summary: dict[str, Any], *, transport: httpx.AsyncBaseTransport | None = None
) -> bool:
    """Alert about a daily run that failed or finished with errors."""
    status = summary.get("status")
    title = "Daily scraping failed" if status == "failed" else "Daily scraping finished with errors"
    if not _should_send(title):
        logger.debug(f"[notify] throttled: {title}")
        return False
    icon = "🔴" if status == "failed" else "🟡"
    body = (
        f"{icon} <b>{title}</b>\n"
        f"run: <code>{summary.get('run_id')}</code>\n"
        f"added: {summary.get('reels_added', 0)}, errors: {summary.get('errors', 0)}, "
        f"failed sources: {summary.get('failed_sources', 0)}"
    )
    return await _send_telegram(settings, body, transport=transport)
