"""
Task Scheduler — runs workflows on a clock instead of a message.

Runs as a background task inside the FastAPI lifespan. Once per tick
(``scheduler.interval_seconds``, default 60s) every enabled task is checked:

    daily     fires when the clock reads ``daily_time`` ("HH:MM"), optionally
              only on ``weekdays`` (0 = Sunday), at most once per day
    interval  fires when ``interval_seconds`` have passed since ``last_run``
    cron      stored, but only fired through ``run_now``

Firing a task walks the workflow's trigger successors with a synthetic
event (raw message ``__scheduled__``) bound to the task's target chat.
Tasks persist in ``{data_dir}/scheduled_tasks.json`` keyed by id.
"""
from __future__ import annotations

import asyncio
import json
import structlog
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from pydantic import ValidationError

from channels.base import ReplySurface
from database.workflow_repo import WorkflowRepository
from models.schemas import SCHEDULED_SENTINELS, InboundEvent, ScheduledTask
from workflow.executor import WorkflowEngine
from workflow.templating import sunday_weekday

logger = structlog.get_logger()

TASKS_FILE = "scheduled_tasks.json"
MIN_INTERVAL_SECONDS = 60

ReplyFactory = Callable[[str, str], ReplySurface]     # (target_type, target_id) → surface


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


class TaskScheduler:

    def __init__(
        self,
        repository: WorkflowRepository,
        engine: WorkflowEngine,
        reply_factory: Optional[ReplyFactory] = None,
        data_dir: str = "./data",
        interval_seconds: int = 60,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository
        self.engine = engine
        self.reply_factory = reply_factory
        self.interval_seconds = interval_seconds
        self.clock = clock or datetime.now
        self._path = Path(data_dir) / TASKS_FILE
        self._tasks: dict[str, ScheduledTask] = {}
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._load()

    # ── Persistence ───────────────────────────────────────

    def _load(self):
        if not self._path.exists():
            return
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("scheduled_tasks_load_failed", error=str(e))
            return
        for task_id, data in (raw or {}).items():
            try:
                self._tasks[task_id] = ScheduledTask.model_validate({**data, "id": task_id})
            except ValidationError as e:
                logger.warning("scheduled_task_skipped", task_id=task_id, error=str(e))
        logger.info("scheduled_tasks_loaded", count=len(self._tasks))

    def _save(self):
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(
                    {tid: t.model_dump(mode="json") for tid, t in self._tasks.items()},
                    f, indent=2, ensure_ascii=False,
                )
            tmp_path.replace(self._path)
        except OSError as e:
            logger.error("scheduled_tasks_save_failed", error=str(e))

    # ── Task management ───────────────────────────────────

    def add_task(self, data: dict[str, Any] | ScheduledTask) -> ScheduledTask:
        """Validate and store a task (replacing one with the same id). Raises ValueError."""
        if isinstance(data, ScheduledTask):
            data = data.model_dump()
        if not data.get("id") or not data.get("workflow_id") or not data.get("target_id"):
            raise ValueError("id, workflow_id and target_id are required")
        try:
            task = ScheduledTask.model_validate({**data, "run_count": 0})
        except ValidationError as e:
            raise ValueError(f"Invalid task: {e}") from e
        if task.task_type == "daily" and not task.daily_time:
            raise ValueError("daily tasks need daily_time")
        if task.task_type == "interval" and (task.interval_seconds or 0) < MIN_INTERVAL_SECONDS:
            raise ValueError(f"interval_seconds must be >= {MIN_INTERVAL_SECONDS}")

        self._tasks[task.id] = task
        self._save()
        logger.info("scheduled_task_added", task_id=task.id, workflow_id=task.workflow_id, kind=task.task_type)
        return task

    def remove_task(self, task_id: str) -> bool:
        if self._tasks.pop(task_id, None) is None:
            return False
        self._save()
        logger.info("scheduled_task_removed", task_id=task_id)
        return True

    def toggle_task(self, task_id: str) -> Optional[bool]:
        task = self._tasks.get(task_id)
        if task is None:
            return None
        task.enabled = not task.enabled
        self._save()
        return task.enabled

    def list_tasks(self) -> list[ScheduledTask]:
        return list(self._tasks.values())

    def get_task(self, task_id: str) -> Optional[ScheduledTask]:
        return self._tasks.get(task_id)

    # ── Execution ─────────────────────────────────────────

    def is_due(self, task: ScheduledTask, now: datetime) -> bool:
        if not task.enabled:
            return False
        last = _parse_time(task.last_run)
        if task.task_type == "daily":
            if task.daily_time != now.strftime("%H:%M"):
                return False
            if task.weekdays and sunday_weekday(now) not in task.weekdays:
                return False
            return last is None or last.date() != now.date()
        if task.task_type == "interval" and task.interval_seconds and task.interval_seconds > 0:
            return last is None or (now - last).total_seconds() >= task.interval_seconds
        return False

    async def check(self, now: Optional[datetime] = None) -> list[str]:
        """Run every due task once; returns the ids that fired."""
        now = now or self.clock()
        fired = []
        for task in list(self._tasks.values()):
            if self.is_due(task, now):
                if await self._execute(task):
                    fired.append(task.id)
        return fired

    async def run_now(self, task_id: str) -> bool:
        task = self._tasks.get(task_id)
        if task is None:
            return False
        return await self._execute(task)

    def _synthetic_event(self, task: ScheduledTask) -> InboundEvent:
        is_group = task.target_type == "group"
        return InboundEvent(
            user_id=task.trigger_user_id or "scheduled",
            group_id=task.target_id if is_group else None,
            message_type=task.target_type,
            raw_message=SCHEDULED_SENTINELS[0],
        )

    async def _execute(self, task: ScheduledTask) -> bool:
        workflow = self.repository.get(task.workflow_id)
        if workflow is None or not workflow.enabled:
            logger.debug("scheduled_task_workflow_unavailable", task_id=task.id, workflow_id=task.workflow_id)
            return False
        if self.reply_factory is None:
            logger.warning("scheduled_task_no_reply_surface", task_id=task.id)
            return False

        try:
            reply = self.reply_factory(task.target_type, task.target_id)
            await self.engine.execute_from_trigger(workflow, self._synthetic_event(task), reply)
        except Exception as e:
            logger.error("scheduled_task_failed", task_id=task.id, error=str(e))
            return False

        task.last_run = self.clock().isoformat()
        task.run_count += 1
        self._save()
        logger.info("scheduled_task_executed", task_id=task.id, run_count=task.run_count)
        return True

    # ── Background loop ───────────────────────────────────

    async def start(self) -> None:
        """Start the scheduler loop as a background task."""
        if self._task and not self._task.done():
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="workflow_scheduler")
        logger.info("scheduler_started", interval_s=self.interval_seconds, tasks=len(self._tasks))

    async def stop(self) -> None:
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("scheduler_stopped")

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.check()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("scheduler_cycle_error", error=str(e))

            await asyncio.sleep(self.interval_seconds)
