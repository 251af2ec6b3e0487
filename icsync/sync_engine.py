from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from icsync.config_manager import ConfigManager
from icsync.fetcher import FeedFetcher
from icsync.ics_parser import parse_calendar
from icsync.models import AppConfig, FeedConfig, SyncResult, load_feed_configs, parse_iso_datetime
from icsync.state_store import StateStore
from icsync.upsert import UpsertEngine

logger = logging.getLogger(__name__)

LAST_RUN_META_KEY = "last_run_at"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class _CycleCounters:
    def __init__(self) -> None:
        self.feeds_total = 0
        self.feeds_fresh = 0
        self.created = 0
        self.updated = 0
        self.unchanged = 0
        self.skipped_events = 0
        self.errors = 0

    def count(self, action: str) -> None:
        if action == "created":
            self.created += 1
        elif action == "updated":
            self.updated += 1
        elif action == "unchanged":
            self.unchanged += 1
        else:
            self.skipped_events += 1

    def as_kwargs(self) -> dict[str, int]:
        return dict(vars(self))


class SyncEngine:
    """Run one sync cycle over every configured feed.

    Errors are contained per event and per feed. ``run_once`` never raises;
    a cycle that cannot load its configuration is reported as ``failed``.
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        state_store: StateStore,
        destination: Any,
        *,
        fetcher: FeedFetcher | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config_manager = config_manager
        self.state_store = state_store
        self.destination = destination
        self.fetcher = fetcher
        self.clock = clock or _utc_now

    def _build_fetcher(self, config: AppConfig) -> FeedFetcher:
        if self.fetcher is not None:
            return self.fetcher
        return FeedFetcher(
            self.state_store,
            open_timeout=config.http.open_timeout,
            read_timeout=config.http.read_timeout,
            user_agent=config.http.user_agent,
            clock=self.clock,
        )

    def _interval_elapsed(self, config: AppConfig, now: datetime) -> bool:
        interval = int(config.fetch_interval_mins)
        if interval < 1:
            return True
        last = self.state_store.get_meta(LAST_RUN_META_KEY)
        if last:
            try:
                last_run = parse_iso_datetime(last)
            except ValueError:
                logger.warning(f"Ignoring unreadable {LAST_RUN_META_KEY}={last!r}")
                last_run = None
            if last_run is not None:
                elapsed_minutes = int((now - last_run).total_seconds()) // 60
                if elapsed_minutes < interval:
                    return False
        self.state_store.set_meta(LAST_RUN_META_KEY, now.isoformat())
        return True

    def _skipped(self, *, trigger: str, message: str, started_at: datetime, record: bool = False) -> SyncResult:
        duration_ms = max(0, int((self.clock() - started_at).total_seconds() * 1000))
        logger.info(message, extra={"trigger": trigger})
        if record:
            run_id = self.state_store.start_sync_run(trigger=trigger)
            self.state_store.finish_sync_run(
                run_id=run_id,
                status="skipped",
                message=message,
                duration_ms=duration_ms,
                changes_applied=0,
                errors=0,
            )
        return SyncResult(
            status="skipped",
            message=message,
            duration_ms=duration_ms,
            trigger=trigger,
            run_at=started_at,
        )

    def run_once(self, trigger: str = "scheduled", force: bool = False) -> SyncResult:
        started_at = self.clock()
        try:
            config = self.config_manager.load()
        except Exception as exc:
            logger.error(
                f"Sync cycle aborted: configuration could not be loaded: {exc}",
                extra={"trigger": trigger, "error_type": type(exc).__name__},
                exc_info=True,
            )
            run_id = self.state_store.start_sync_run(trigger=trigger)
            self.state_store.finish_sync_run(
                run_id=run_id,
                status="failed",
                message=f"config load failed: {exc}",
                duration_ms=0,
                changes_applied=0,
                errors=1,
            )
            return SyncResult(
                status="failed",
                message=f"config load failed: {exc}",
                duration_ms=0,
                trigger=trigger,
                errors=1,
                run_at=started_at,
            )

        if not config.enabled:
            return self._skipped(
                trigger=trigger, message="Sync disabled. Cycle skipped.", started_at=started_at, record=True
            )
        if not force and not self._interval_elapsed(config, started_at):
            return self._skipped(
                trigger=trigger,
                message=f"Last run is less than {config.fetch_interval_mins} minutes ago. Cycle skipped.",
                started_at=started_at,
            )

        run_id = self.state_store.start_sync_run(trigger=trigger)
        counters = _CycleCounters()
        feeds = load_feed_configs(config.feeds)
        counters.feeds_total = len(feeds)
        fetcher = self._build_fetcher(config)
        upserter = UpsertEngine(self.destination, config)
        logger.info(f"Sync cycle started with {len(feeds)} feeds", extra={"trigger": trigger, "run_id": run_id})

        for feed in feeds:
            try:
                self._process_feed(feed, fetcher=fetcher, upserter=upserter, counters=counters, run_id=run_id)
            except Exception as exc:
                counters.errors += 1
                logger.error(
                    f"Feed {feed.key} failed: {exc}",
                    extra={"feed_key": feed.key, "run_id": run_id, "error_type": type(exc).__name__},
                    exc_info=True,
                )

        duration_ms = max(0, int((self.clock() - started_at).total_seconds() * 1000))
        message = (
            f"{counters.feeds_fresh}/{counters.feeds_total} feeds fresh, "
            f"{counters.created} created, {counters.updated} updated, {counters.errors} errors"
        )
        self.state_store.finish_sync_run(
            run_id=run_id,
            status="success",
            message=message,
            duration_ms=duration_ms,
            changes_applied=counters.created + counters.updated,
            errors=counters.errors,
        )
        logger.info(f"Sync cycle finished: {message}", extra={"trigger": trigger, "run_id": run_id})
        return SyncResult(
            status="success",
            message=message,
            duration_ms=duration_ms,
            trigger=trigger,
            run_at=started_at,
            **counters.as_kwargs(),
        )

    def _process_feed(
        self,
        feed: FeedConfig,
        *,
        fetcher: FeedFetcher,
        upserter: UpsertEngine,
        counters: _CycleCounters,
        run_id: int,
    ) -> None:
        result = fetcher.fetch(feed.url, feed.key)
        if not result.is_fresh:
            return
        counters.feeds_fresh += 1

        events = parse_calendar(result.body or b"")
        logger.info(f"Feed {feed.key} yielded {len(events)} events", extra={"feed_key": feed.key, "run_id": run_id})
        for event in events:
            try:
                outcome = upserter.upsert(event, feed)
            except Exception as exc:
                counters.errors += 1
                logger.error(
                    f"Upsert failed uid={event.uid} feed={feed.key}: {exc}",
                    extra={"uid": event.uid, "feed_key": feed.key, "run_id": run_id, "error_type": type(exc).__name__},
                )
                self.state_store.record_audit_event(
                    feed_key=feed.key,
                    uid=event.uid,
                    action="upsert_failed",
                    details={"error": str(exc), "error_type": type(exc).__name__},
                    run_id=run_id,
                )
                continue

            counters.count(outcome.action)
            if outcome.action in {"created", "updated"}:
                self.state_store.record_audit_event(
                    feed_key=feed.key,
                    uid=outcome.uid,
                    action=f"record_{outcome.action}",
                    details={
                        "record_id": outcome.record_id,
                        "body_changed": outcome.body_changed,
                        "tags_added": outcome.tags_added,
                    },
                    run_id=run_id,
                )
