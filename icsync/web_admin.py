from __future__ import annotations

import os
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from icsync.config_manager import ConfigManager, redact_url
from icsync.models import load_feed_configs
from icsync.record_store import RecordStore
from icsync.scheduler import SyncScheduler
from icsync.state_store import StateStore
from icsync.sync_engine import SyncEngine


class SyncRunRequest(BaseModel):
    wait: bool = False


class AppContext:
    def __init__(self, config_path: str, state_path: str) -> None:
        self.config_manager = ConfigManager(config_path)
        self.state_store = StateStore(state_path)
        self.record_store = RecordStore(state_path)
        self.sync_engine = SyncEngine(self.config_manager, self.state_store, self.record_store)
        self.scheduler = SyncScheduler(self.sync_engine, self.config_manager)


def create_app(start_scheduler: bool = True) -> FastAPI:
    config_path = os.getenv("ICSYNC_CONFIG_PATH", "config.yaml")
    state_path = os.getenv("ICSYNC_STATE_PATH", "data/state.db")
    context = AppContext(config_path=config_path, state_path=state_path)

    app = FastAPI(title="ICS Feed Sync", version="0.1.0")
    app.state.context = context

    @app.on_event("startup")
    def _startup() -> None:
        if start_scheduler:
            app.state.context.scheduler.start()

    @app.on_event("shutdown")
    def _shutdown() -> None:
        app.state.context.scheduler.stop()

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/config")
    def get_config() -> dict[str, Any]:
        return app.state.context.config_manager.masked()

    @app.get("/api/feeds")
    def list_feeds() -> dict[str, Any]:
        config = app.state.context.config_manager.load()
        states = app.state.context.state_store.list_feed_states()
        feeds = []
        for feed in load_feed_configs(config.feeds):
            state = states.get(feed.key)
            feeds.append(
                {
                    "key": feed.key,
                    "url": redact_url(feed.url),
                    "category_id": feed.category_id,
                    "static_tags": list(feed.static_tags),
                    "namespace": feed.namespace,
                    "state": state.to_dict() if state else {},
                }
            )
        return {"feeds": feeds}

    @app.post("/api/sync/run")
    def trigger_sync(request: SyncRunRequest | None = None) -> dict[str, Any]:
        if request is not None and request.wait:
            result = app.state.context.sync_engine.run_once(trigger="manual", force=True)
            return {"message": "sync finished", "result": result.to_dict()}
        app.state.context.scheduler.trigger_manual()
        return {"message": "sync triggered"}

    @app.get("/api/sync/status")
    def sync_status(limit: int = 20) -> dict[str, Any]:
        return {"runs": app.state.context.state_store.recent_sync_runs(limit=limit)}

    @app.get("/api/audit/events")
    def audit_events(limit: int = 100, run_id: int | None = None) -> dict[str, Any]:
        return {"events": app.state.context.state_store.recent_audit_events(limit=limit, run_id=run_id)}

    @app.get("/api/records")
    def list_records(limit: int = 50) -> dict[str, Any]:
        return {"records": app.state.context.record_store.list_records(limit=limit)}

    @app.get("/api/records/{record_id}")
    def get_record(record_id: int) -> dict[str, Any]:
        record = app.state.context.record_store.get_record(record_id)
        if record is None:
            raise HTTPException(status_code=404, detail="record not found")
        return {"record": record.to_dict()}

    return app
