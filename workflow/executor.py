"""
Workflow Engine — walks a workflow graph for one inbound message.

Flow:
  1. Pick the first trigger node (in node order) that matches the text
  2. Seed a fresh execution context with the trigger's capture groups
  3. Depth-first walk: execute a node, then follow its outgoing connections
     in declared order. Condition nodes continue on output_1 when true and
     on output_2 when false; every other kind continues on output_1.

A node's failure is logged and the walk goes on. Connection cycles are
allowed, so a node may run more than once per walk; every walk is bounded
by ``engine.max_depth`` and ``engine.max_node_visits``.
"""
from __future__ import annotations

import random
import structlog
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from channels.base import ReplySurface
from config.settings import Settings, get_settings
from database.store_base import BaseDataStore
from models.schemas import FAILURE_PORT, SUCCESS_PORT, InboundEvent, NodeKind, Workflow
from utils.regex_cache import RegexCache
from workflow.actions import NodeActions
from workflow.conditions import ConditionEvaluator
from workflow.http import HttpCaller
from workflow.templating import TemplateRenderer
from workflow.triggers import TriggerMatcher

logger = structlog.get_logger()


@dataclass
class WalkResult:
    matched: bool
    trigger_id: Optional[str] = None
    visited: list[str] = field(default_factory=list)     # node ids in execution order
    context: dict[str, Any] = field(default_factory=dict)


@dataclass
class _WalkState:
    workflow: Workflow
    event: InboundEvent
    text: str
    ctx: dict[str, Any]
    reply: ReplySurface
    visited: list[str] = field(default_factory=list)
    bounded: bool = False


class WorkflowEngine:

    def __init__(
        self,
        store: BaseDataStore,
        settings: Settings = None,
        regex_cache: Optional[RegexCache] = None,
        http: Optional[HttpCaller] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.regex_cache = regex_cache or RegexCache(self.settings.engine.regex_cache_size)
        self.http = http or HttpCaller(self.settings.http)
        rng = rng or random.Random()

        self.renderer = TemplateRenderer(store, rng=rng, clock=clock)
        self.triggers = TriggerMatcher(self.regex_cache)
        self.conditions = ConditionEvaluator(store, self.renderer, self.regex_cache, rng=rng, clock=clock)
        self.actions = NodeActions(
            store, self.renderer, self.regex_cache, self.http, self.settings, rng=rng, sleep=sleep,
        )

    # ── Entry points ──────────────────────────────────────

    async def run(self, workflow: Workflow, event: InboundEvent, text: str, reply: ReplySurface) -> WalkResult:
        for node in workflow.trigger_nodes():
            captures = self.triggers.match(node.params, text)
            if captures is None:
                continue
            logger.debug("trigger_matched", workflow_id=workflow.id, node_id=node.id, captures=len(captures))
            state = _WalkState(workflow, event, text, {"regex_groups": captures}, reply)
            await self._visit(state, node.id, depth=0)
            return WalkResult(True, node.id, state.visited, dict(state.ctx))
        return WalkResult(False)

    async def execute(self, workflow: Workflow, event: InboundEvent, text: str, reply: ReplySurface) -> bool:
        """True when a trigger matched and the workflow ran."""
        return (await self.run(workflow, event, text, reply)).matched

    async def run_from_trigger(self, workflow: Workflow, event: InboundEvent, reply: ReplySurface) -> WalkResult:
        """
        Scheduler entry: skip trigger matching and walk every trigger's
        success successors with empty message text and one shared context.
        """
        state = _WalkState(workflow, event, "", {"regex_groups": []}, reply)
        ran = False
        for trigger in workflow.trigger_nodes():
            for conn in workflow.outgoing(trigger.id, SUCCESS_PORT):
                await self._visit(state, conn.to_node, depth=1)
                ran = True
        return WalkResult(ran, None, state.visited, dict(state.ctx))

    async def execute_from_trigger(self, workflow: Workflow, event: InboundEvent, reply: ReplySurface) -> bool:
        return (await self.run_from_trigger(workflow, event, reply)).matched

    # ── Walk ──────────────────────────────────────────────

    def _within_bounds(self, state: _WalkState, node_id: str, depth: int) -> bool:
        limits = self.settings.engine
        if depth <= limits.max_depth and len(state.visited) < limits.max_node_visits:
            return True
        if not state.bounded:
            logger.warning(
                "walk_bounded",
                workflow_id=state.workflow.id,
                node_id=node_id,
                depth=depth,
                visits=len(state.visited),
            )
            state.bounded = True
        return False

    async def _visit(self, state: _WalkState, node_id: str, depth: int):
        node = state.workflow.get_node(node_id)
        if node is None:
            return
        if not self._within_bounds(state, node_id, depth):
            return
        state.visited.append(node_id)
        logger.debug("node_executing", workflow_id=state.workflow.id, node_id=node_id, kind=node.type)

        passed = True
        try:
            if node.type == NodeKind.CONDITION.value:
                passed = self.conditions.evaluate(node.params, state.event, state.text, state.ctx)
            elif node.type != NodeKind.TRIGGER.value:
                await self.actions.run(node, state.event, state.text, state.ctx, state.reply)
        except Exception as e:
            logger.error("node_failed", workflow_id=state.workflow.id, node_id=node_id, kind=node.type, error=str(e))
            passed = node.type != NodeKind.CONDITION.value

        port = SUCCESS_PORT if passed else FAILURE_PORT
        for conn in state.workflow.outgoing(node_id, port):
            await self._visit(state, conn.to_node, depth + 1)
