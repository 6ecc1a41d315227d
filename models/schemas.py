"""
Core data models for the msgflow workflow engine.
These are the universal types shared across all modules.

Workflow documents are authored in a visual editor and stored as JSON; they
are validated once here, at load time, so the engine never re-inspects raw
node data per event.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError, model_validator


# ──────────────────────────────────────────────────────────────
#  Enums & constants
# ──────────────────────────────────────────────────────────────

class NodeKind(str, Enum):
    TRIGGER = "trigger"
    CONDITION = "condition"
    ACTION = "action"
    DELAY = "delay"
    SET_VAR = "set_var"
    STORAGE = "storage"
    GLOBAL_STORAGE = "global_storage"
    LEADERBOARD = "leaderboard"
    MATH = "math"
    STRING_OP = "string_op"
    LIST_RANDOM = "list_random"


SUCCESS_PORT = "output_1"
FAILURE_PORT = "output_2"

_PORT_ALIASES = {
    "output": SUCCESS_PORT,
    "output-1": SUCCESS_PORT,
    "output_1": SUCCESS_PORT,
    "output-2": FAILURE_PORT,
    "output_2": FAILURE_PORT,
}

# Synthetic message text the scheduler feeds through trigger matching
SCHEDULED_SENTINELS = ("__scheduled__", "__scheduled_trigger__")

# Triggers that fire on arbitrary text; saving them needs the master password
MASTER_ONLY_TRIGGERS = ("regex", "any", "scheduled", "timer")


def is_flag_set(value: Any) -> bool:
    """Editor checkboxes arrive as booleans or as the text "true"."""
    return value is True or value == "true"


# ──────────────────────────────────────────────────────────────
#  Node parameters — one typed record per node kind
# ──────────────────────────────────────────────────────────────

class NodeParams(BaseModel):
    """
    Base record for a node's ``data`` mapping.

    Blank and null values fall back to the field default, the same way the
    editor treats an empty input box. Unknown keys are kept.
    """
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    @model_validator(mode="before")
    @classmethod
    def _drop_blank(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None and v != ""}
        return data


class TriggerParams(NodeParams):
    trigger_type: str = "exact"          # exact | contains | startswith | regex | any | scheduled | timer
    trigger_content: str = ""
    trigger_value: str = ""

    @property
    def literal(self) -> str:
        return self.trigger_content or self.trigger_value


class ConditionParams(NodeParams):
    condition_type: str = "contains"
    condition_value: str = ""
    var_name: str = ""


class ActionParams(NodeParams):
    action_type: str = "reply_text"
    action_value: str = ""
    # reply variants
    image_text: str = ""
    file_name: str = ""
    music_type: str = "qq"
    # group moderation
    target_user: str = ""
    ban_duration: str = ""
    reject_add: Any = False
    enable_ban: Any = False
    card_value: str = ""
    enable_admin: Any = False
    message_id: str = ""
    # generic platform call
    api_action: str = ""
    api_params: str = "{}"
    result_var: str = ""
    # generic HTTP call
    api_url: str = ""
    api_method: str = "GET"
    api_headers: str = ""
    api_body: str = ""
    api_timeout: Any = 10
    response_type: str = "json"          # json | text | binary
    reply_type: str = "text"             # text | image | voice | video | forward
    api_reply: str = ""


class DelayParams(NodeParams):
    seconds: Any = 1


class SetVarParams(NodeParams):
    var_name: str = ""
    var_value: str = ""


class StorageParams(NodeParams):
    storage_type: str = "get"            # get | set | incr | decr | delete
    storage_key: str = ""
    storage_value: str = ""
    result_var: str = ""
    default_value: Any = 0


class LeaderboardParams(NodeParams):
    leaderboard_type: str = "top"        # top | my_rank | count
    leaderboard_key: str = "score"
    limit: Any = 10
    ascending: Any = False


class MathParams(NodeParams):
    math_type: str = "add"
    operand1: str = "0"
    operand2: str = "0"
    result_var: str = "math_result"


class StringOpParams(NodeParams):
    string_type: str = "concat"
    input1: str = ""
    input2: str = ""
    target: str = ""
    result_var: str = "string_result"


class ListRandomParams(NodeParams):
    list_items: str = ""
    weights: str = ""
    result_var: str = "list_result"
    index_var: str = "list_index"


_PARAMS_BY_KIND: dict[str, type[NodeParams]] = {
    NodeKind.TRIGGER.value: TriggerParams,
    NodeKind.CONDITION.value: ConditionParams,
    NodeKind.ACTION.value: ActionParams,
    NodeKind.DELAY.value: DelayParams,
    NodeKind.SET_VAR.value: SetVarParams,
    NodeKind.STORAGE.value: StorageParams,
    NodeKind.GLOBAL_STORAGE.value: StorageParams,
    NodeKind.LEADERBOARD.value: LeaderboardParams,
    NodeKind.MATH.value: MathParams,
    NodeKind.STRING_OP.value: StringOpParams,
    NodeKind.LIST_RANDOM.value: ListRandomParams,
}

# action nodes that compute instead of reply carry the computing node's record
_ACTION_PARAMS = {
    "math": MathParams,
    "string_op": StringOpParams,
}


def params_model_for(kind: str, data: dict[str, Any]) -> type[NodeParams]:
    if kind == NodeKind.ACTION.value:
        sub = _ACTION_PARAMS.get(str(data.get("action_type") or ""))
        if sub is not None:
            return sub
    return _PARAMS_BY_KIND.get(kind, NodeParams)


# ──────────────────────────────────────────────────────────────
#  Graph
# ──────────────────────────────────────────────────────────────

class WorkflowNode(BaseModel):
    """One unit of workflow behaviour; ``params`` is the typed view of ``data``."""
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    type: str
    x: float = 0
    y: float = 0
    data: dict[str, Any] = {}
    params: NodeParams = Field(default_factory=NodeParams, exclude=True)

    @model_validator(mode="after")
    def _parse_params(self) -> WorkflowNode:
        self.params = params_model_for(self.type, self.data).model_validate(self.data)
        return self


class WorkflowConnection(BaseModel):
    """Directed edge tagged with the output port it leaves from."""
    model_config = ConfigDict(coerce_numbers_to_str=True)

    from_node: str = ""
    to_node: str = ""
    from_output: str = SUCCESS_PORT

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        out = data.get("from_output") or data.get("port") or SUCCESS_PORT
        return {
            "from_node": data.get("from_node") or data.get("from") or "",
            "to_node": data.get("to_node") or data.get("to") or "",
            "from_output": _PORT_ALIASES.get(str(out), str(out)),
        }


class Workflow(BaseModel):
    """
    An automation definition: trigger → conditions → actions.

    Example:
      id: signin
      name: daily sign-in
      nodes:
        - { id: t, type: trigger, data: { trigger_type: contains, trigger_content: 签到 } }
        - { id: c, type: condition, data: { condition_type: cooldown, condition_value: "lastSignin,86400" } }
        - { id: ok, type: action, data: { action_type: reply_text, action_value: 签到成功 } }
      connections:
        - { from_node: t, to_node: c }
        - { from_node: c, to_node: ok, from_output: output_1 }
    """
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    name: str = "untitled"
    trigger_type: str = "exact"
    trigger_content: str = ""
    enabled: bool = True
    stop_propagation: bool = False
    nodes: list[WorkflowNode] = []
    connections: list[WorkflowConnection] = []

    _node_index: dict[str, WorkflowNode] = PrivateAttr(default_factory=dict)
    _outgoing: dict[tuple[str, str], list[WorkflowConnection]] = PrivateAttr(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _nodes_as_list(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("nodes"), dict):
            data = {**data, "nodes": list(data["nodes"].values())}
        if isinstance(data, dict) and data.get("connections") is None:
            data = {**data, "connections": []}
        return data

    @model_validator(mode="after")
    def _index(self) -> Workflow:
        seen: dict[str, WorkflowNode] = {}
        for node in self.nodes:
            if node.id in seen:
                raise ValueError(f"duplicate node id '{node.id}'")
            seen[node.id] = node
        self._node_index = seen
        outgoing: dict[tuple[str, str], list[WorkflowConnection]] = {}
        for conn in self.connections:
            outgoing.setdefault((conn.from_node, conn.from_output), []).append(conn)
        self._outgoing = outgoing
        return self

    def get_node(self, node_id: str) -> Optional[WorkflowNode]:
        return self._node_index.get(node_id)

    def trigger_nodes(self) -> list[WorkflowNode]:
        return [n for n in self.nodes if n.type == NodeKind.TRIGGER.value]

    def outgoing(self, node_id: str, port: str = SUCCESS_PORT) -> list[WorkflowConnection]:
        """Connections leaving ``node_id`` on ``port``, in declared order."""
        return self._outgoing.get((node_id, port), [])


def load_workflow(raw: dict[str, Any]) -> Workflow:
    """Validate a raw workflow document."""
    try:
        return Workflow.model_validate(raw)
    except ValidationError as e:
        raise ValueError(f"Invalid workflow: {e}") from e


# ──────────────────────────────────────────────────────────────
#  Inbound event
# ──────────────────────────────────────────────────────────────

class InboundEvent(BaseModel):
    """A normalized inbound message. Read-only."""
    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    user_id: str
    group_id: Optional[str] = None
    message_type: str = "private"        # group | private
    message_id: Optional[str] = None
    raw_message: str = ""
    self_id: Optional[str] = None
    sender: dict[str, Any] = {}

    @property
    def is_group(self) -> bool:
        return self.message_type == "group" and bool(self.group_id)


# ──────────────────────────────────────────────────────────────
#  Scheduled task
# ──────────────────────────────────────────────────────────────

class ScheduledTask(BaseModel):
    """Runs a workflow's trigger successors on a clock instead of a message."""
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    workflow_id: str
    task_type: str = "daily"             # daily | interval | cron
    daily_time: Optional[str] = None     # "HH:MM"
    interval_seconds: Optional[int] = None
    weekdays: list[int] = []             # 0 = Sunday
    target_type: str = "group"           # group | private
    target_id: str
    trigger_user_id: Optional[str] = None
    enabled: bool = True
    last_run: Optional[str] = None       # ISO timestamp
    run_count: int = 0
    description: str = ""
