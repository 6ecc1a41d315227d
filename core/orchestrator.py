"""
Orchestrator — routes inbound chat messages through the stored workflows.

Architecture:
  Inbound:   bot host / webhook → InboundEvent + ReplySurface
             → every enabled workflow, in stored order
             → WorkflowEngine.execute (trigger match → graph walk)
             → a matched workflow with stop_propagation ends dispatch

  Scheduled: TaskScheduler tick → synthetic event → engine.execute_from_trigger

All behaviour lives in the workflow documents; the orchestrator only owns
dispatch order and failure isolation between workflows.
"""
from __future__ import annotations

import structlog
from dataclasses import dataclass
from typing import Optional

from channels.action_surface import ActionCaller, ActionReplySurface
from channels.base import ReplySurface
from config.settings import Settings, get_settings
from database.store_base import BaseDataStore
from database.store_factory import create_store
from database.workflow_repo import WorkflowRepository
from job_queue.scheduler import TaskScheduler
from models.schemas import SCHEDULED_SENTINELS, InboundEvent
from workflow.executor import WorkflowEngine

logger = structlog.get_logger()


class WorkflowOrchestrator:
    """
    Dispatches one inbound message across all enabled workflows.

    A workflow that raises is logged and skipped; the next one still runs.
    """

    def __init__(self, settings: Settings, repository: WorkflowRepository, engine: WorkflowEngine):
        self.settings = settings
        self.repository = repository
        self.engine = engine

    async def handle_message(self, event: InboundEvent, reply: ReplySurface) -> bool:
        """True when a matched workflow stopped propagation."""
        if not self.settings.enable_workflow:
            return False
        text = (event.raw_message or "").strip()
        if not text:
            return False
        if text in SCHEDULED_SENTINELS:
            # scheduler texts never arrive as chat
            logger.warning("scheduled_sentinel_rejected", user_id=event.user_id, group_id=event.group_id)
            return False

        workflows = self.repository.load()
        for wf in workflows:
            if not wf.enabled:
                continue
            try:
                matched = await self.engine.execute(wf, event, text, reply)
            except Exception as e:
                logger.error("workflow_failed", workflow_id=wf.id, name=wf.name, error=str(e))
                continue
            if matched:
                logger.info("workflow_matched", workflow_id=wf.id, name=wf.name, user_id=event.user_id)
                if wf.stop_propagation:
                    return True
        return False


# ──────────────────────────────────────────────────────────────
#  Runtime wiring
# ──────────────────────────────────────────────────────────────

@dataclass
class WorkflowRuntime:
    settings: Settings
    store: BaseDataStore
    repository: WorkflowRepository
    engine: WorkflowEngine
    orchestrator: WorkflowOrchestrator
    scheduler: TaskScheduler
    call_action: Optional[ActionCaller] = None

    def reply_surface(self, target_type: str, target_id: str, user_id: str = None, self_id: str = None) -> Optional[ReplySurface]:
        if self.call_action is None:
            return None
        return ActionReplySurface(self.call_action, target_type, target_id, user_id=user_id, self_id=self_id)


def build_runtime(
    settings: Settings = None,
    store: BaseDataStore = None,
    call_action: Optional[ActionCaller] = None,
    engine: WorkflowEngine = None,
) -> WorkflowRuntime:
    """Wire store, repository, engine, orchestrator and scheduler from settings."""
    settings = settings or get_settings()
    store = store or create_store({
        "backend": settings.storage.backend,
        "data_dir": settings.storage.data_dir,
    })
    repository = WorkflowRepository(settings.storage.data_dir)
    engine = engine or WorkflowEngine(store, settings)
    orchestrator = WorkflowOrchestrator(settings, repository, engine)

    runtime = WorkflowRuntime(
        settings=settings,
        store=store,
        repository=repository,
        engine=engine,
        orchestrator=orchestrator,
        scheduler=None,
        call_action=call_action,
    )
    runtime.scheduler = TaskScheduler(
        repository,
        engine,
        reply_factory=runtime.reply_surface if call_action else None,
        data_dir=settings.storage.data_dir,
        interval_seconds=settings.scheduler.interval_seconds,
    )
    logger.info(
        "runtime_built",
        storage=settings.storage.backend,
        data_dir=settings.storage.data_dir,
        workflows=len(repository.load()),
    )
    return runtime
