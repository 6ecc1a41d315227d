"""
FastAPI Application — workflow management API + inbound message endpoint.

Provides:
- Workflow CRUD for the visual editor (list / save / delete / toggle)
- Master-password gate for workflows that fire on arbitrary text
- HTTP preview used by the editor to preview custom_api responses
- Scheduled task management
- Inbound message endpoint feeding the orchestrator

Run with:
    uvicorn api.main:create_app --factory
"""
from __future__ import annotations

import json
import time
import random
import string
import structlog
from datetime import datetime
from typing import Any, Optional
from contextlib import asynccontextmanager

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import Body, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict

from config.logging import configure_logging
from core.orchestrator import WorkflowRuntime, build_runtime
from models.schemas import MASTER_ONLY_TRIGGERS, InboundEvent, NodeKind, load_workflow

logger = structlog.get_logger()

BODY_METHODS = ("POST", "PUT", "PATCH")
PREVIEW_TEXT_LIMIT = 5000


# ──────────────────────────────────────────────────────────────
#  Request Models
# ──────────────────────────────────────────────────────────────

class PasswordRequest(BaseModel):
    password: str = ""


class IdRequest(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str = ""
    master_password: str = ""


class TestApiRequest(BaseModel):
    url: str = ""
    method: str = "GET"
    headers: dict[str, Any] | str = {}
    body: Optional[str] = None


class InboundMessageRequest(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    user_id: str
    group_id: Optional[str] = None
    message_type: str = "private"
    message_id: Optional[str] = None
    raw_message: str = ""
    self_id: Optional[str] = None
    sender: dict[str, Any] = {}


# ──────────────────────────────────────────────────────────────
#  Helpers
# ──────────────────────────────────────────────────────────────

def generate_workflow_id() -> str:
    stamp = format(int(time.time() * 1000), "x")
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"wf_{stamp}{suffix}"


def needs_master(data: dict[str, Any]) -> bool:
    """Workflows firing on arbitrary text (regex / any / clock triggers) need the master password."""
    if data.get("trigger_type") in MASTER_ONLY_TRIGGERS:
        return True
    nodes = data.get("nodes") or []
    if isinstance(nodes, dict):
        nodes = list(nodes.values())
    return any(
        isinstance(n, dict)
        and n.get("type") == NodeKind.TRIGGER.value
        and str((n.get("data") or {}).get("trigger_type") or "") in MASTER_ONLY_TRIGGERS
        for n in nodes
    )


def create_app(runtime: WorkflowRuntime = None) -> FastAPI:
    runtime = runtime or build_runtime()
    settings = runtime.settings
    configure_logging(settings.debug)

    def verify_master(password: Optional[str]) -> bool:
        return not settings.master_password or password == settings.master_password

    def auth_error() -> dict[str, Any]:
        return {"success": False, "error": "master password required", "need_auth": True}

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.scheduler.enabled:
            await runtime.scheduler.start()
        logger.info("msgflow_started", workflows=len(runtime.repository.load()))
        yield
        await runtime.scheduler.stop()
        await runtime.engine.http.close()
        logger.info("msgflow_stopped")

    app = FastAPI(
        title="msgflow API",
        description="Workflow engine for chat messages",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ══════════════════════════════════════════════════════════
    #  HEALTH & CONFIG
    # ══════════════════════════════════════════════════════════

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "workflow_enabled": settings.enable_workflow,
            "workflows": len(runtime.repository.load()),
            "scheduled_tasks": len(runtime.scheduler.list_tasks()),
        }

    @app.get("/config")
    async def get_config():
        return {
            "success": True,
            "require_master": bool(settings.master_password),
            "master_only_triggers": list(MASTER_ONLY_TRIGGERS),
        }

    @app.post("/verify_master")
    async def verify_master_password(req: PasswordRequest):
        if verify_master(req.password):
            return {"success": True, "message": "verified"}
        return {"success": False, "error": "wrong password"}

    # ══════════════════════════════════════════════════════════
    #  WORKFLOWS
    # ══════════════════════════════════════════════════════════

    @app.get("/list")
    async def list_workflows():
        return {
            "success": True,
            "workflows": [wf.model_dump(mode="json") for wf in runtime.repository.load()],
        }

    @app.post("/save")
    async def save_workflow(data: dict[str, Any] = Body(...), master_password: Optional[str] = Query(None)):
        if needs_master(data) and not verify_master(data.get("master_password") or master_password):
            return auth_error()
        nodes = data.get("nodes")
        if not nodes:
            return {"success": False, "error": "missing nodes" if nodes is None else "no nodes"}
        nodes = list(nodes.values()) if isinstance(nodes, dict) else nodes
        if not nodes:
            return {"success": False, "error": "no nodes"}

        existing = runtime.repository.get(data["id"]) if data.get("id") else None
        raw = {
            "id": data.get("id") or generate_workflow_id(),
            "name": data.get("name") or (existing.name if existing else "untitled"),
            "trigger_type": data.get("trigger_type") or (existing.trigger_type if existing else "exact"),
            "trigger_content": data.get("trigger_content")
            if data.get("trigger_content") is not None
            else (existing.trigger_content if existing else ""),
            "enabled": data.get("enabled") if data.get("enabled") is not None else (existing.enabled if existing else True),
            "stop_propagation": bool(data.get("stop_propagation") or False),
            "nodes": nodes,
            "connections": data.get("connections") or [],
        }
        try:
            workflow = load_workflow(raw)
        except ValueError as e:
            return {"success": False, "error": str(e)}
        if not runtime.repository.upsert(workflow):
            return {"success": False, "error": "save failed"}
        return {"success": True, "data": {"id": workflow.id}}

    @app.post("/delete")
    async def delete_workflow(req: IdRequest):
        if not req.id:
            return {"success": False, "error": "missing id"}
        return {"success": runtime.repository.delete(req.id), "message": "deleted"}

    @app.post("/toggle")
    async def toggle_workflow(req: IdRequest):
        if not req.id:
            return {"success": False, "error": "missing id"}
        enabled = runtime.repository.toggle(req.id)
        return {"success": enabled is not None, "enabled": enabled, "message": "updated"}

    # ══════════════════════════════════════════════════════════
    #  HTTP PREVIEW
    # ══════════════════════════════════════════════════════════

    @app.post("/test_api")
    async def test_api(req: TestApiRequest):
        if not req.url:
            return {"success": False, "error": "missing url"}
        headers = {"User-Agent": settings.http.user_agent, "Accept": "*/*"}
        if isinstance(req.headers, str):
            try:
                parsed = json.loads(req.headers)
            except ValueError:
                parsed = {}
            if isinstance(parsed, dict):
                headers.update({str(k): str(v) for k, v in parsed.items()})
        else:
            headers.update({str(k): str(v) for k, v in req.headers.items()})

        method = req.method.upper()
        try:
            response = await runtime.engine.http.request(
                method,
                req.url,
                headers=headers,
                content=req.body if method in BODY_METHODS else None,
                timeout=settings.http.timeout,
            )
        except Exception as e:
            logger.warning("test_api_failed", url=req.url, error=str(e))
            return {"success": False, "error": str(e) or "request failed"}

        content_type = response.headers.get("content-type", "")
        if any(kind in content_type for kind in ("image", "audio", "video")):
            return {"success": True, "status_code": response.status_code, "is_binary": True, "response": "[binary]"}
        if "application/json" in content_type:
            try:
                body = response.json()
            except ValueError:
                return {"success": True, "status_code": response.status_code, "response": response.text[:PREVIEW_TEXT_LIMIT]}
            return {
                "success": True,
                "status_code": response.status_code,
                "is_json": True,
                "json_data": body,
                "response": json.dumps(body, ensure_ascii=False),
            }
        return {"success": True, "status_code": response.status_code, "response": response.text[:PREVIEW_TEXT_LIMIT]}

    # ══════════════════════════════════════════════════════════
    #  SCHEDULED TASKS
    # ══════════════════════════════════════════════════════════

    @app.get("/scheduled/list")
    async def list_scheduled():
        return {"success": True, "tasks": [t.model_dump(mode="json") for t in runtime.scheduler.list_tasks()]}

    @app.post("/scheduled/add")
    async def add_scheduled(data: dict[str, Any] = Body(...), master_password: Optional[str] = Query(None)):
        if not verify_master(data.pop("master_password", None) or master_password):
            return auth_error()
        data["enabled"] = data.get("enabled") is not False
        try:
            task = runtime.scheduler.add_task(data)
        except ValueError as e:
            return {"success": False, "error": str(e)}
        return {"success": True, "message": f"task [{task.id}] added"}

    @app.post("/scheduled/delete")
    async def delete_scheduled(req: IdRequest, master_password: Optional[str] = Query(None)):
        if not verify_master(req.master_password or master_password):
            return auth_error()
        if not req.id:
            return {"success": False, "error": "missing id"}
        if runtime.scheduler.remove_task(req.id):
            return {"success": True, "message": "deleted"}
        return {"success": False, "error": "task not found"}

    @app.post("/scheduled/toggle")
    async def toggle_scheduled(req: IdRequest, master_password: Optional[str] = Query(None)):
        if not verify_master(req.master_password or master_password):
            return auth_error()
        if not req.id:
            return {"success": False, "error": "missing id"}
        enabled = runtime.scheduler.toggle_task(req.id)
        if enabled is None:
            return {"success": False, "error": "task not found"}
        return {"success": True, "enabled": enabled}

    @app.post("/scheduled/run")
    async def run_scheduled(req: IdRequest, master_password: Optional[str] = Query(None)):
        if not verify_master(req.master_password or master_password):
            return auth_error()
        if not req.id:
            return {"success": False, "error": "missing id"}
        if runtime.scheduler.get_task(req.id) is None:
            return {"success": False, "error": "task not found"}
        ran = await runtime.scheduler.run_now(req.id)
        return {"success": True, "ran": ran, "message": "executed"}

    # ══════════════════════════════════════════════════════════
    #  INBOUND MESSAGES
    # ══════════════════════════════════════════════════════════

    @app.post("/messages/inbound")
    async def receive_inbound_message(req: InboundMessageRequest):
        event = InboundEvent(**req.model_dump())
        is_group = event.is_group
        reply = runtime.reply_surface(
            "group" if is_group else "private",
            event.group_id if is_group else event.user_id,
            user_id=event.user_id,
            self_id=event.self_id,
        )
        if reply is None:
            raise HTTPException(503, "No bot action caller configured")
        handled = await runtime.orchestrator.handle_message(event, reply)
        return {"success": True, "handled": handled}

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
