"""
WorkflowRepository — the authored workflows, persisted as one JSON list.

Data layout:
  {data_dir}/workflows.json    [ {id, name, enabled, nodes, connections, …}, … ]

The file may be edited by hand or by another process; the cached list is
dropped whenever the file's mtime changes. Entries that fail validation are
skipped with a warning so one broken workflow never disables the rest.
"""
from __future__ import annotations

import json
import structlog
from pathlib import Path
from typing import Any, Optional

from models.schemas import Workflow, load_workflow

logger = structlog.get_logger()

WORKFLOWS_FILE = "workflows.json"


class WorkflowRepository:

    def __init__(self, data_dir: str = "./data"):
        self._data_dir = Path(data_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self._path = self._data_dir / WORKFLOWS_FILE
        self._cache: Optional[list[Workflow]] = None
        self._mtime: Optional[float] = None

    @property
    def path(self) -> Path:
        return self._path

    def _current_mtime(self) -> Optional[float]:
        try:
            return self._path.stat().st_mtime
        except FileNotFoundError:
            return None

    def load(self) -> list[Workflow]:
        """All valid workflows in stored order."""
        mtime = self._current_mtime()
        if self._cache is not None and mtime == self._mtime:
            return self._cache

        workflows: list[Workflow] = []
        if mtime is not None:
            try:
                with open(self._path, "r", encoding="utf-8") as f:
                    raw = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.error("workflows_load_failed", path=str(self._path), error=str(e))
                raw = []
            for entry in raw if isinstance(raw, list) else []:
                try:
                    workflows.append(load_workflow(entry))
                except ValueError as e:
                    wf_id = entry.get("id") if isinstance(entry, dict) else None
                    logger.warning("workflow_skipped", workflow_id=wf_id, error=str(e))

        self._cache = workflows
        self._mtime = mtime
        logger.debug("workflows_loaded", count=len(workflows))
        return workflows

    def save_all(self, workflows: list[Workflow]) -> bool:
        data: list[dict[str, Any]] = [wf.model_dump(mode="json") for wf in workflows]
        tmp_path = self._path.with_suffix(".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            tmp_path.replace(self._path)
        except OSError as e:
            logger.error("workflows_save_failed", path=str(self._path), error=str(e))
            return False
        self._cache = list(workflows)
        self._mtime = self._current_mtime()
        return True

    def get(self, workflow_id: str) -> Optional[Workflow]:
        return next((wf for wf in self.load() if wf.id == workflow_id), None)

    def upsert(self, workflow: Workflow) -> bool:
        """Replace the workflow with the same id, or append a new one."""
        workflows = list(self.load())
        for i, existing in enumerate(workflows):
            if existing.id == workflow.id:
                workflows[i] = workflow
                break
        else:
            workflows.append(workflow)
        ok = self.save_all(workflows)
        if ok:
            logger.info("workflow_saved", workflow_id=workflow.id, name=workflow.name)
        return ok

    def delete(self, workflow_id: str) -> bool:
        workflows = self.load()
        remaining = [wf for wf in workflows if wf.id != workflow_id]
        if len(remaining) == len(workflows):
            return False
        logger.info("workflow_deleted", workflow_id=workflow_id)
        return self.save_all(remaining)

    def toggle(self, workflow_id: str) -> Optional[bool]:
        """Flip ``enabled``; returns the new state, or None when the id is unknown."""
        workflows = list(self.load())
        for i, wf in enumerate(workflows):
            if wf.id == workflow_id:
                workflows[i] = wf.model_copy(update={"enabled": not wf.enabled})
                if not self.save_all(workflows):
                    return None
                return workflows[i].enabled
        return None
