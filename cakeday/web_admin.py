from __future__ import annotations

import os
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from cakeday.config_manager import SECRET_MASK, ConfigManager
from cakeday.scheduler import TRIGGER_MANUAL, SyncScheduler
from cakeday.state_store import StateStore
from cakeday.sync_engine import SyncEngine


class ConfigUpdateRequest(BaseModel):
    payload: dict[str, Any] = Field(default_factory=dict)


class AppContext:
    def __init__(self, config_path: str, state_path: str) -> None:
        self.config_manager = ConfigManager(config_path)
        self.state_store = StateStore(state_path)
        self.sync_engine = SyncEngine(self.config_manager, self.state_store)
        self.scheduler = SyncScheduler(self.sync_engine, self.config_manager)


def _sanitize_config_payload(payload: dict[str, Any], current: dict[str, Any]) -> dict[str, Any]:
    sanitized = dict(payload)
    current_password = str(current.get("caldav", {}).get("password", ""))

    caldav = sanitized.get("caldav")
    if isinstance(caldav, dict):
        caldav = dict(caldav)
        password = caldav.get("password")
        if password is not None and str(password).strip() in {"", SECRET_MASK}:
            if current_password:
                caldav.pop("password", None)
            else:
                caldav["password"] = ""
        if caldav:
            sanitized["caldav"] = caldav
        else:
            sanitized.pop("caldav", None)
    return sanitized


def create_app() -> FastAPI:
    config_path = os.getenv("CAKEDAY_CONFIG_PATH", "config.yaml")
    state_path = os.getenv("CAKEDAY_STATE_PATH", "data/state.db")
    context = AppContext(config_path=config_path, state_path=state_path)

    app = FastAPI(title="Cakeday Admin", version="0.1.0")
    app.state.context = context

    @app.on_event("startup")
    def _startup() -> None:
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

    @app.put("/api/config")
    def put_config(request: ConfigUpdateRequest) -> dict[str, Any]:
        if not isinstance(request.payload, dict):
            raise HTTPException(status_code=400, detail="payload must be an object")
        current = app.state.context.config_manager.load().to_dict()
        sanitized_payload = _sanitize_config_payload(request.payload, current)
        app.state.context.config_manager.update(sanitized_payload)
        return {
            "message": "config updated",
            "config": app.state.context.config_manager.masked(),
        }

    @app.post("/api/sync/run")
    def run_sync() -> dict[str, Any]:
        result = app.state.context.scheduler.run_now(TRIGGER_MANUAL)
        return {"message": "sync completed", "result": result.to_dict()}

    @app.post("/api/sync/trigger")
    def trigger_sync() -> dict[str, str]:
        app.state.context.scheduler.trigger_manual()
        return {"message": "sync triggered"}

    @app.get("/api/sync/status")
    def sync_status(limit: int = 20) -> dict[str, Any]:
        scheduler = app.state.context.scheduler
        last_result = scheduler.last_result
        return {
            "scheduler_running": scheduler.is_running,
            "last_result": last_result.to_dict() if last_result else None,
            "runs": app.state.context.state_store.recent_sync_runs(limit=limit),
        }

    @app.get("/api/audit/events")
    def audit_events(limit: int = 100, run_id: int | None = None) -> dict[str, Any]:
        return {"events": app.state.context.state_store.recent_audit_events(limit=limit, run_id=run_id)}

    return app


app = create_app()
