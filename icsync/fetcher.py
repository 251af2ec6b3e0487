"""Conditional GET of calendar feeds, backed by cached validators."""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

import requests

from icsync.errors import FetchError
from icsync.models import FeedState, normalize_feed_url
from icsync.state_store import StateStore

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FetchStatus(str, enum.Enum):
    FRESH = "fresh"
    NOT_MODIFIED = "not_modified"
    ERROR = "error"


@dataclass
class FetchResult:
    status: FetchStatus
    body: bytes | None = None

    @property
    def is_fresh(self) -> bool:
        return self.status is FetchStatus.FRESH


class FeedFetcher:
    """Fetch feeds with If-None-Match / If-Modified-Since.

    Every call to :meth:`fetch` writes exactly one FeedState for the feed key,
    whatever the outcome. Failures are not retried here; the next sync cycle
    is the retry.
    """

    def __init__(
        self,
        state_store: StateStore,
        *,
        session: requests.Session | None = None,
        open_timeout: float = 10,
        read_timeout: float = 20,
        user_agent: str = "icsync/0.1",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.state_store = state_store
        self.session = session or requests.Session()
        self.timeout = (open_timeout, read_timeout)
        self.user_agent = user_agent
        self.clock = clock or _utc_now

    def _now_iso(self) -> str:
        return self.clock().astimezone(timezone.utc).isoformat()

    def _request_headers(self, state: FeedState) -> dict[str, str]:
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "text/calendar, text/plain;q=0.9, */*;q=0.5",
        }
        if state.etag:
            headers["If-None-Match"] = state.etag
        if state.last_modified:
            headers["If-Modified-Since"] = state.last_modified
        return headers

    def _get(self, url: str, headers: dict[str, str]) -> requests.Response:
        response = self.session.get(url, headers=headers, timeout=self.timeout)
        if response.status_code not in (200, 304):
            reason = response.reason or ""
            raise FetchError(f"HTTP {response.status_code} {reason}".strip(), status_code=response.status_code)
        return response

    def fetch(self, url: str, key: str) -> FetchResult:
        url = normalize_feed_url(url)
        previous = self.state_store.get_feed_state(key)

        try:
            response = self._get(url, self._request_headers(previous))
        except (FetchError, requests.RequestException) as exc:
            message = str(exc) or type(exc).__name__
            self.state_store.set_feed_state(
                key,
                FeedState(fetched_at=self._now_iso(), status="error", error=message),
            )
            logger.warning(
                f"Fetch failed for feed {key}: {message}",
                extra={
                    "feed_key": key,
                    "url": url,
                    "status": getattr(exc, "status_code", None),
                    "error_type": type(exc).__name__,
                },
            )
            return FetchResult(FetchStatus.ERROR)

        if response.status_code == 304:
            # A 304 carries no new validators; keep the ones that produced it.
            self.state_store.set_feed_state(
                key,
                FeedState(
                    etag=previous.etag,
                    last_modified=previous.last_modified,
                    fetched_at=self._now_iso(),
                    status="304",
                ),
            )
            logger.debug(f"Feed {key} not modified", extra={"feed_key": key, "status": "304"})
            return FetchResult(FetchStatus.NOT_MODIFIED)

        self.state_store.set_feed_state(
            key,
            FeedState(
                etag=_header(response, "ETag"),
                last_modified=_header(response, "Last-Modified"),
                fetched_at=self._now_iso(),
                status="200",
            ),
        )
        logger.info(
            f"Fetched feed {key} ({len(response.content)} bytes)",
            extra={"feed_key": key, "status": "200"},
        )
        return FetchResult(FetchStatus.FRESH, response.content)


def _header(response: Any, name: str) -> str:
    return str(response.headers.get(name) or "").strip()
