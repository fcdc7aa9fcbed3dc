"""Live draft synchronization and merged timeline layout for peer-to-peer chat."""

from .drafts import ConversationState, Draft, LocalDraft, Message, Phase, apply
from .layout import DisplayMessage, Spacer, layout_conversation, merge_threads
from .packets import ProtocolViolation, UserDestination, WebPacket, decode_frame, encode_frame
from .store import ConversationStore

__all__ = [
    "ConversationState",
    "ConversationStore",
    "DisplayMessage",
    "Draft",
    "LocalDraft",
    "Message",
    "Phase",
    "ProtocolViolation",
    "Spacer",
    "UserDestination",
    "WebPacket",
    "apply",
    "decode_frame",
    "encode_frame",
    "layout_conversation",
    "merge_threads",
]
