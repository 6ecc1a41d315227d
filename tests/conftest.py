"""Shared test fixtures for msgflow."""
import random
import pytest
from datetime import datetime
from typing import Any, Optional
from unittest.mock import AsyncMock

from channels.base import FileRef, ReplySurface
from config.settings import EngineConfig, HttpConfig, SchedulerConfig, Settings, StorageConfig
from database.store_memory import InMemoryDataStore
from models.schemas import InboundEvent, Workflow, load_workflow
from workflow.executor import WorkflowEngine
from workflow.http import HttpCaller

# Friday afternoon; Sunday-based weekday 5
FIXED_NOW = datetime(2024, 3, 15, 14, 30, 0)


class RecordingReplySurface(ReplySurface):
    """Reply surface that records every call as ``(method, args)``."""

    def __init__(self, api_result: Any = None):
        self.calls: list[tuple[str, tuple]] = []
        self.api_result = api_result

    @property
    def texts(self) -> list[str]:
        return [args[0] for name, args in self.calls if name == "reply"]

    def named(self, name: str) -> list[tuple]:
        return [args for n, args in self.calls if n == name]

    def _record(self, name: str, *args):
        self.calls.append((name, args))

    async def reply(self, text: str) -> None:
        self._record("reply", text)

    async def reply_image(self, image: FileRef, text: Optional[str] = None) -> None:
        self._record("reply_image", image, text)

    async def reply_voice(self, audio: FileRef) -> None:
        self._record("reply_voice", audio)

    async def reply_video(self, video: FileRef) -> None:
        self._record("reply_video", video)

    async def reply_forward(self, messages: list[str]) -> None:
        self._record("reply_forward", messages)

    async def reply_at(self, text: str) -> None:
        self._record("reply_at", text)

    async def reply_face(self, face_id: int) -> None:
        self._record("reply_face", face_id)

    async def reply_poke(self, user_id: str) -> None:
        self._record("reply_poke", user_id)

    async def reply_json(self, data: Any) -> None:
        self._record("reply_json", data)

    async def reply_file(self, file: str, name: Optional[str] = None) -> None:
        self._record("reply_file", file, name)

    async def reply_music(self, kind: str, music_id: str) -> None:
        self._record("reply_music", kind, music_id)

    async def group_sign(self) -> None:
        self._record("group_sign")

    async def group_ban(self, user_id: str, duration: int) -> None:
        self._record("group_ban", user_id, duration)

    async def group_kick(self, user_id: str, reject_add: bool = False) -> None:
        self._record("group_kick", user_id, reject_add)

    async def group_whole_ban(self, enable: bool) -> None:
        self._record("group_whole_ban", enable)

    async def group_set_card(self, user_id: str, card: str) -> None:
        self._record("group_set_card", user_id, card)

    async def group_set_admin(self, user_id: str, enable: bool) -> None:
        self._record("group_set_admin", user_id, enable)

    async def group_notice(self, content: str) -> None:
        self._record("group_notice", content)

    async def recall_msg(self, message_id: str) -> None:
        self._record("recall_msg", message_id)

    async def call_api(self, action: str, params: dict[str, Any]) -> Any:
        self._record("call_api", action, params)
        return self.api_result


def make_event(raw_message: str = "", user_id: str = "10001", group_id: Optional[str] = "20001", **kw) -> InboundEvent:
    return InboundEvent(
        user_id=user_id,
        group_id=group_id,
        message_type="group" if group_id else "private",
        message_id=kw.pop("message_id", "m1"),
        raw_message=raw_message,
        **kw,
    )


def make_workflow(nodes: list[dict], connections: list[dict] = None, **kw) -> Workflow:
    return load_workflow({
        "id": kw.pop("id", "wf_test"),
        "name": kw.pop("name", "test"),
        "nodes": nodes,
        "connections": connections or [],
        **kw,
    })


def chain(*node_ids: str) -> list[dict]:
    """Success-port connections linking ``node_ids`` in order."""
    return [{"from_node": a, "to_node": b} for a, b in zip(node_ids, node_ids[1:])]


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        master_password="",
        engine=EngineConfig(max_depth=64, max_node_visits=256),
        storage=StorageConfig(backend="memory", data_dir=str(tmp_path)),
        http=HttpConfig(timeout=5.0, retries=2),
        scheduler=SchedulerConfig(enabled=False),
    )


@pytest.fixture
def store() -> InMemoryDataStore:
    return InMemoryDataStore()


@pytest.fixture
def sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def engine(store, settings, sleep) -> WorkflowEngine:
    return WorkflowEngine(
        store,
        settings,
        http=HttpCaller(settings.http, backoff=0),
        rng=random.Random(42),
        clock=lambda: FIXED_NOW,
        sleep=sleep,
    )


@pytest.fixture
def reply() -> RecordingReplySurface:
    return RecordingReplySurface()
