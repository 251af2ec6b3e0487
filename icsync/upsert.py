from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable

from icsync.errors import UpsertError
from icsync.models import AppConfig, Event, FeedConfig
from icsync.renderer import render_event, title_from_event

logger = logging.getLogger(__name__)

ICS_UID_FIELD = "ics_uid"
ICS_SOURCE_FIELD = "ics_source"
TAG_INVALID_CHARS = re.compile(r"[^a-z0-9\-_]")


def normalize_tags(
    tags: Iterable[Any] | None,
    *,
    namespace: str | None = None,
    max_length: int = 20,
) -> list[str]:
    normalized: list[str] = []
    seen: set[str] = set()
    for tag in tags or []:
        text = TAG_INVALID_CHARS.sub("-", str(tag).lower())
        if not text or text in seen:
            continue
        seen.add(text)
        normalized.append(text)
    prefix = TAG_INVALID_CHARS.sub("-", str(namespace or "").strip().lower())
    if prefix:
        normalized = [f"{prefix}-{tag}" for tag in normalized]
    return [tag[:max_length] for tag in normalized]


@dataclass
class UpsertOutcome:
    action: str
    uid: str
    record_id: int | None = None
    body_changed: bool = False
    tags_added: list[str] = field(default_factory=list)


class UpsertEngine:
    """Create or update one destination record per event UID.

    ``destination`` is anything with the RecordStore interface:
    ``find_record_id``, ``get_record``, ``create``, ``update_first_content``
    and ``merge_tags``.
    """

    def __init__(self, destination: Any, config: AppConfig) -> None:
        self.destination = destination
        self.config = config

    def tags_for(self, feed: FeedConfig) -> list[str]:
        tags = [*self.config.default_tag_list, *feed.static_tags]
        return normalize_tags(
            tags,
            namespace=feed.namespace or self.config.namespace or None,
            max_length=self.config.max_tag_length,
        )

    def category_for(self, feed: FeedConfig) -> int | None:
        if feed.category_id is not None:
            return feed.category_id
        return self.config.default_category_id

    def upsert(self, event: Event, feed: FeedConfig) -> UpsertOutcome:
        uid = (event.uid or "").strip()
        if not uid:
            return UpsertOutcome(action="skipped", uid="")

        record_id = self.destination.find_record_id(ICS_UID_FIELD, uid)
        tags = self.tags_for(feed)
        body = render_event(event, site_tz=self.config.display_timezone)

        if record_id is not None:
            return self._update(record_id, uid, body, tags)
        return self._create(event, uid, body, tags, feed)

    def _update(self, record_id: int, uid: str, body: str, tags: list[str]) -> UpsertOutcome:
        record = self.destination.get_record(record_id)
        if record is None:
            raise UpsertError(f"record {record_id} linked to uid {uid} no longer exists")

        body_changed = body.strip() != (record.body or "").strip()
        if body_changed:
            if not self.destination.update_first_content(record_id, body, self.config.actor):
                raise UpsertError(f"record {record_id} could not be revised")

        tags_added: list[str] = []
        if tags:
            existing = set(record.tags)
            tags_added = [tag for tag in tags if tag not in existing]
            if tags_added:
                self.destination.merge_tags(record_id, tags)

        action = "updated" if body_changed or tags_added else "unchanged"
        return UpsertOutcome(
            action=action,
            uid=uid,
            record_id=record_id,
            body_changed=body_changed,
            tags_added=tags_added,
        )

    def _create(self, event: Event, uid: str, body: str, tags: list[str], feed: FeedConfig) -> UpsertOutcome:
        result = self.destination.create(
            title_from_event(event),
            body,
            self.category_for(feed),
            tags,
            actor=self.config.actor,
            custom_fields={ICS_UID_FIELD: uid, ICS_SOURCE_FIELD: feed.source},
        )
        if result.errors or result.record is None:
            raise UpsertError(", ".join(result.errors) or "record was not created")
        logger.info(
            f"Created record {result.record.record_id} for {uid}",
            extra={"uid": uid, "feed_key": feed.key},
        )
        return UpsertOutcome(
            action="created",
            uid=uid,
            record_id=result.record.record_id,
            body_changed=True,
            tags_added=list(tags),
        )
