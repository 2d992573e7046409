"""Shared builders for reelwatch tests."""
from datetime import datetime, timedelta, timezone

from reelwatch.settings import Settings


def make_settings(**env) -> Settings:
    base = {
        "APIFY_TOKEN": "test-token",
        "MIN_VIEWS": 0,
        "MAX_AGE_DAYS": 180,
        "DRY_RUN": False,
        "SCHEDULER_ENABLED": False,
        "TELEGRAM_BOT_TOKEN": None,
        "TELEGRAM_CHAT_ID": None,
    }
    base.update(env)
    return Settings(_env_file=None, **base)


def reel_item(url, *, views=100, age_days=1, type_="Video", now=None, **extra):
    now = now or datetime.now(timezone.utc)
    item = {
        "type": type_,
        "url": url,
        "shortCode": url.rstrip("/").rsplit("/", 1)[-1],
        "ownerUsername": "someone",
        "caption": f"caption for {url}",
        "likesCount": 10,
        "commentsCount": 2,
        "displayUrl": f"{url}/thumb.jpg",
        "videoUrl": f"{url}/video.mp4",
    }
    if views is not None:
        item["videoPlayCount"] = views
    if age_days is not None:
        item["timestamp"] = (now - timedelta(days=age_days)).isoformat().replace("+00:00", "Z")
    item.update(extra)
    return item


class FakeActor:
    """Scripted stand-in for ApifyActorClient: identifier -> items or exception."""

    def __init__(self, responses=None):
        self.responses = responses or {}
        self.calls: list[tuple[str, int | None]] = []

    async def invoke(self, identifier, result_limit=None):
        self.calls.append((identifier, result_limit))
        response = self.responses.get(identifier, [])
        if isinstance(response, Exception):
            raise response
        return list(response)
