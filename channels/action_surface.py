"""
ActionReplySurface — ReplySurface over a generic bot action caller.

The caller is any ``async (action, params) -> result`` callable, e.g. a
OneBot-style HTTP/WS client owned by the host process. Messages are sent as
segment lists:

    [{"type": "text", "data": {"text": "hi"}},
     {"type": "image", "data": {"file": "https://…/a.png"}}]

Binary payloads (from ``custom_api`` binary responses) are inlined as
``base64://…`` file references.
"""
from __future__ import annotations

import base64
import json
import structlog
from typing import Any, Awaitable, Callable, Optional

from channels.base import FileRef, ReplySurface

logger = structlog.get_logger()

ActionCaller = Callable[[str, dict[str, Any]], Awaitable[Any]]

FORWARD_NICKNAME = "工作流"
DEFAULT_FORWARD_UIN = "10000"


def to_file(data: FileRef) -> str:
    if isinstance(data, (bytes, bytearray)):
        return "base64://" + base64.b64encode(bytes(data)).decode("ascii")
    return data


def segment(kind: str, **data: Any) -> dict[str, Any]:
    return {"type": kind, "data": data}


class ActionReplySurface(ReplySurface):

    def __init__(
        self,
        call_action: ActionCaller,
        target_type: str,
        target_id: str,
        user_id: Optional[str] = None,
        self_id: Optional[str] = None,
    ):
        self.call_action = call_action
        self.target_type = target_type          # "group" | "private"
        self.target_id = str(target_id)
        self.user_id = user_id or self.target_id
        self.self_id = self_id

    @property
    def is_group(self) -> bool:
        return self.target_type == "group"

    def _target(self) -> dict[str, Any]:
        return {"group_id": self.target_id} if self.is_group else {"user_id": self.target_id}

    async def _send(self, message: list[dict[str, Any]]):
        action = "send_group_msg" if self.is_group else "send_private_msg"
        try:
            await self.call_action(action, {**self._target(), "message": message})
        except Exception as e:
            logger.error("reply_send_failed", action=action, target=self.target_id, error=str(e))

    async def _group_action(self, action: str, params: dict[str, Any]):
        if not self.is_group:
            return
        try:
            await self.call_action(action, {"group_id": self.target_id, **params})
        except Exception as e:
            logger.debug("group_action_failed", action=action, error=str(e))

    # ── Messages ──────────────────────────────────────────

    async def reply(self, text: str) -> None:
        await self._send([segment("text", text=text)])

    async def reply_image(self, image: FileRef, text: Optional[str] = None) -> None:
        message = [segment("image", file=to_file(image))]
        if text:
            message.append(segment("text", text=text))
        await self._send(message)

    async def reply_voice(self, audio: FileRef) -> None:
        await self._send([segment("record", file=to_file(audio))])

    async def reply_video(self, video: FileRef) -> None:
        await self._send([segment("video", file=to_file(video))])

    async def reply_forward(self, messages: list[str]) -> None:
        nodes = [
            segment(
                "node",
                user_id=self.self_id or DEFAULT_FORWARD_UIN,
                nickname=FORWARD_NICKNAME,
                content=[segment("text", text=m)],
            )
            for m in messages
        ]
        action = "send_group_forward_msg" if self.is_group else "send_private_forward_msg"
        try:
            await self.call_action(action, {**self._target(), "messages": nodes})
        except Exception as e:
            logger.error("reply_send_failed", action=action, target=self.target_id, error=str(e))

    async def reply_at(self, text: str) -> None:
        await self._send([segment("at", qq=self.user_id), segment("text", text=" " + text)])

    async def reply_face(self, face_id: int) -> None:
        await self._send([segment("face", id=str(face_id))])

    async def reply_poke(self, user_id: str) -> None:
        await self._send([segment("poke", qq=user_id)])

    async def reply_json(self, data: Any) -> None:
        await self._send([segment("json", data=json.dumps(data, ensure_ascii=False))])

    async def reply_file(self, file: str, name: Optional[str] = None) -> None:
        await self._send([segment("file", file=file, name=name or "file")])

    async def reply_music(self, kind: str, music_id: str) -> None:
        await self._send([segment("music", type=kind, id=music_id)])

    # ── Group moderation ──────────────────────────────────

    async def group_sign(self) -> None:
        await self._group_action("send_group_sign", {})

    async def group_ban(self, user_id: str, duration: int) -> None:
        await self._group_action("set_group_ban", {"user_id": user_id, "duration": duration})

    async def group_kick(self, user_id: str, reject_add: bool = False) -> None:
        await self._group_action("set_group_kick", {"user_id": user_id, "reject_add_request": reject_add})

    async def group_whole_ban(self, enable: bool) -> None:
        await self._group_action("set_group_whole_ban", {"enable": enable})

    async def group_set_card(self, user_id: str, card: str) -> None:
        await self._group_action("set_group_card", {"user_id": user_id, "card": card})

    async def group_set_admin(self, user_id: str, enable: bool) -> None:
        await self._group_action("set_group_admin", {"user_id": user_id, "enable": enable})

    async def group_notice(self, content: str) -> None:
        await self._group_action("_send_group_notice", {"content": content})

    # ── Misc ──────────────────────────────────────────────

    async def recall_msg(self, message_id: str) -> None:
        try:
            await self.call_action("delete_msg", {"message_id": message_id})
        except Exception as e:
            logger.debug("recall_failed", message_id=message_id, error=str(e))

    async def call_api(self, action: str, params: dict[str, Any]) -> Any:
        try:
            return await self.call_action(action, params)
        except Exception as e:
            logger.warning("call_api_failed", action=action, error=str(e))
            return None
