"""
Reply Surface — what a running workflow can do to the chat it came from.

A surface is created per inbound event (or per scheduled task) and bound
to one conversation: a group or a private chat. Workflows never address
other conversations.

Implementations:
  - ActionReplySurface (channels/action_surface.py) — builds message
    segments and hands them to a generic bot action caller.

Moderation calls (``group_*``) and ``recall_msg`` are fire-and-forget:
implementations swallow their failures. ``call_api`` returns the platform
result, or None on failure.
"""
from __future__ import annotations

import abc
from typing import Any, Optional, Union

# files are URLs / paths, or raw bytes from a binary HTTP response
FileRef = Union[str, bytes]


class ReplySurface(abc.ABC):
    """Abstract reply surface consumed by the action nodes."""

    # ── Messages ──────────────────────────────────────────────

    @abc.abstractmethod
    async def reply(self, text: str) -> None:
        ...

    @abc.abstractmethod
    async def reply_image(self, image: FileRef, text: Optional[str] = None) -> None:
        """Image, optionally followed by a caption in the same message."""
        ...

    @abc.abstractmethod
    async def reply_voice(self, audio: FileRef) -> None:
        ...

    @abc.abstractmethod
    async def reply_video(self, video: FileRef) -> None:
        ...

    @abc.abstractmethod
    async def reply_forward(self, messages: list[str]) -> None:
        """Bundle several messages into one forwarded-chat card."""
        ...

    @abc.abstractmethod
    async def reply_at(self, text: str) -> None:
        """Mention the sender, followed by ``text``."""
        ...

    @abc.abstractmethod
    async def reply_face(self, face_id: int) -> None:
        ...

    @abc.abstractmethod
    async def reply_poke(self, user_id: str) -> None:
        ...

    @abc.abstractmethod
    async def reply_json(self, data: Any) -> None:
        ...

    @abc.abstractmethod
    async def reply_file(self, file: str, name: Optional[str] = None) -> None:
        ...

    @abc.abstractmethod
    async def reply_music(self, kind: str, music_id: str) -> None:
        ...

    # ── Group moderation ──────────────────────────────────────

    @abc.abstractmethod
    async def group_sign(self) -> None:
        ...

    @abc.abstractmethod
    async def group_ban(self, user_id: str, duration: int) -> None:
        ...

    @abc.abstractmethod
    async def group_kick(self, user_id: str, reject_add: bool = False) -> None:
        ...

    @abc.abstractmethod
    async def group_whole_ban(self, enable: bool) -> None:
        ...

    @abc.abstractmethod
    async def group_set_card(self, user_id: str, card: str) -> None:
        ...

    @abc.abstractmethod
    async def group_set_admin(self, user_id: str, enable: bool) -> None:
        ...

    @abc.abstractmethod
    async def group_notice(self, content: str) -> None:
        ...

    # ── Misc ──────────────────────────────────────────────────

    @abc.abstractmethod
    async def recall_msg(self, message_id: str) -> None:
        ...

    @abc.abstractmethod
    async def call_api(self, action: str, params: dict[str, Any]) -> Any:
        ...
