"""Reply surfaces: how a running workflow talks back to the chat platform."""
from channels.base import FileRef, ReplySurface
from channels.action_surface import ActionCaller, ActionReplySurface, segment, to_file

__all__ = [
    "ReplySurface", "FileRef",
    "ActionReplySurface", "ActionCaller", "segment", "to_file",
]
