from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any

from icsync.errors import ConfigError

logger = logging.getLogger(__name__)

FEED_KEY_LENGTH = 20
DEFAULT_MAX_TAG_LENGTH = 20


def _ensure_tz(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def parse_iso_datetime(value: str | datetime | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return _ensure_tz(value)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    return _ensure_tz(parsed)


def serialize_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return _ensure_tz(value).isoformat()


def derive_feed_key(url: str) -> str:
    return hashlib.sha1(url.encode("utf-8")).hexdigest()[:FEED_KEY_LENGTH]  # nosec B324


def normalize_feed_url(url: str) -> str:
    text = str(url or "").strip()
    if text.lower().startswith("webcal://"):
        return "https://" + text[len("webcal://") :]
    return text


def _optional_int(value: Any, field_name: str) -> int | None:
    if value is None or str(value).strip() == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{field_name} must be an integer, got {value!r}") from exc


def _string_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        raise ConfigError(f"expected a list of strings, got {type(value).__name__}")
    return [str(x).strip() for x in items if str(x).strip()]


@dataclass(frozen=True)
class FeedConfig:
    url: str
    key: str
    category_id: int | None = None
    static_tags: tuple[str, ...] = ()
    namespace: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FeedConfig":
        if not isinstance(data, dict):
            raise ConfigError(f"feed entry must be an object, got {type(data).__name__}")
        url = normalize_feed_url(data.get("url", ""))
        if not url:
            raise ConfigError("feed entry is missing url")
        key = (str(data.get("key") or "").strip() or derive_feed_key(url))[:FEED_KEY_LENGTH]
        return cls(
            url=url,
            key=key,
            category_id=_optional_int(data.get("category_id"), "category_id"),
            static_tags=tuple(_string_list(data.get("static_tags"))),
            namespace=str(data.get("namespace") or "").strip(),
        )

    @property
    def source(self) -> str:
        return self.key or self.url

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["static_tags"] = list(self.static_tags)
        return payload


def _decode_feed_list(raw: Any) -> list[Any]:
    if raw is None:
        return []
    if isinstance(raw, str):
        if not raw.strip():
            return []
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"invalid JSON in feeds: {exc}") from exc
    if not isinstance(raw, list):
        raise ConfigError(f"feeds must be a list, got {type(raw).__name__}")
    return raw


def load_feed_configs(raw: Any) -> list[FeedConfig]:
    """Turn the ``feeds`` setting (a list or a JSON string) into FeedConfigs.

    A malformed setting yields an empty list; a malformed entry is dropped.
    Neither raises.
    """
    try:
        entries = _decode_feed_list(raw)
    except ConfigError as exc:
        logger.warning(f"Ignoring feed configuration: {exc}")
        return []

    feeds: list[FeedConfig] = []
    for index, entry in enumerate(entries):
        try:
            feeds.append(FeedConfig.from_dict(entry))
        except ConfigError as exc:
            logger.warning(f"Skipping feed entry #{index}: {exc}")
    return feeds


@dataclass
class FeedState:
    etag: str = ""
    last_modified: str = ""
    fetched_at: str = ""
    status: str = ""
    error: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "FeedState":
        data = data or {}
        return cls(
            etag=str(data.get("etag") or ""),
            last_modified=str(data.get("last_modified") or ""),
            fetched_at=str(data.get("fetched_at") or ""),
            status=str(data.get("status") or ""),
            error=str(data.get("error") or ""),
        )

    def to_dict(self) -> dict[str, str]:
        return {key: value for key, value in asdict(self).items() if value}


@dataclass(frozen=True)
class Event:
    uid: str
    summary: str = ""
    description: str = ""
    location: str = ""
    url: str = ""
    starts_at: date | datetime | None = None
    ends_at: date | datetime | None = None
    tzid: str | None = None

    @property
    def all_day(self) -> bool:
        return isinstance(self.starts_at, date) and not isinstance(self.starts_at, datetime)


@dataclass
class DestinationRecord:
    record_id: int
    title: str
    body: str
    category_id: int | None = None
    tags: list[str] = field(default_factory=list)
    custom_fields: dict[str, str] = field(default_factory=dict)
    created_by: str = ""
    version: int = 1
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class HttpConfig:
    open_timeout: float = 10
    read_timeout: float = 20
    user_agent: str = "icsync/0.1"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "HttpConfig":
        data = data or {}
        return cls(
            open_timeout=max(1.0, float(data.get("open_timeout", 10))),
            read_timeout=max(1.0, float(data.get("read_timeout", 20))),
            user_agent=str(data.get("user_agent", "icsync/0.1")).strip() or "icsync/0.1",
        )


@dataclass
class SyncConfig:
    interval_seconds: int = 300

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SyncConfig":
        data = data or {}
        return cls(interval_seconds=max(30, int(data.get("interval_seconds", 300))))


@dataclass
class AppConfig:
    enabled: bool = True
    feeds: Any = field(default_factory=list)
    default_tags: str = ""
    default_category_id: int | None = None
    namespace: str = ""
    max_tag_length: int = DEFAULT_MAX_TAG_LENGTH
    fetch_interval_mins: int = 0
    display_timezone: str = "UTC"
    actor: str = "system"
    http: HttpConfig = field(default_factory=HttpConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AppConfig":
        data = data or {}
        feeds = data.get("feeds", [])
        # Feed entries are validated per cycle by load_feed_configs.
        if feeds is None:
            feeds = []
        default_category_id = data.get("default_category_id")
        return cls(
            enabled=bool(data.get("enabled", True)),
            feeds=feeds,
            default_tags=str(data.get("default_tags") or "").strip(),
            default_category_id=int(default_category_id) if default_category_id not in (None, "") else None,
            namespace=str(data.get("namespace") or "").strip(),
            max_tag_length=max(1, int(data.get("max_tag_length", DEFAULT_MAX_TAG_LENGTH))),
            fetch_interval_mins=max(0, int(data.get("fetch_interval_mins", 0))),
            display_timezone=str(data.get("display_timezone", "UTC")).strip() or "UTC",
            actor=str(data.get("actor", "system")).strip() or "system",
            http=HttpConfig.from_dict(data.get("http")),
            sync=SyncConfig.from_dict(data.get("sync")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @property
    def default_tag_list(self) -> list[str]:
        return [tag.strip() for tag in self.default_tags.split(",") if tag.strip()]


@dataclass
class SyncResult:
    status: str
    message: str
    duration_ms: int
    trigger: str
    feeds_total: int = 0
    feeds_fresh: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped_events: int = 0
    errors: int = 0
    run_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def changes_applied(self) -> int:
        return self.created + self.updated

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["run_at"] = serialize_datetime(self.run_at)
        return payload


def default_app_config() -> AppConfig:
    return AppConfig()
