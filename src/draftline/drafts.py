"""Draft lifecycle state machine.

Every change to a conversation goes through :func:`apply`, which takes the
current :class:`ConversationState` snapshot and one command and returns a new
snapshot plus the packets to send. Snapshots are never mutated in place.

The local user has at most one draft at a time::

    IDLE --first keystroke--> PENDING --NewDraft echo--> ACTIVE --EndDraft echo--> IDLE

Each peer has at most one remote draft, created by ``NewDraft`` and removed by
``EndDraft`` (finalized into a message) or ``DiscardDraft`` (abandoned).
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import List, Mapping, Optional, Tuple, Union

from .packets import (
    Destination,
    DiscardDraft,
    Edit,
    EndDraft,
    NewDraft,
    NewMessage,
    ProtocolViolation,
    StartDraft,
    Timestamp,
    UnknownDestination,
    UserId,
    WebPacket,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Message:
    """A finalized, immutable chat message."""

    sender: UserId
    destination: Destination
    content: str
    id: str
    start_time: Timestamp
    end_time: Timestamp

    def __post_init__(self) -> None:
        if self.start_time > self.end_time:
            raise ValueError("message start_time must not be after end_time")


@dataclass(frozen=True)
class Draft:
    id: Optional[str] = None
    content: str = ""
    start_time: Optional[Timestamp] = None
    end_time: Optional[Timestamp] = None


class Phase(enum.Enum):
    IDLE = "idle"
    PENDING = "pending"
    ACTIVE = "active"


@dataclass(frozen=True)
class LocalDraft:
    phase: Phase = Phase.IDLE
    destination: Optional[Destination] = None
    draft: Draft = field(default_factory=Draft)


def _frozen(drafts: Mapping[UserId, Draft]) -> Mapping[UserId, Draft]:
    return MappingProxyType(dict(drafts))


@dataclass(frozen=True)
class ConversationState:
    user_id: UserId
    messages: Tuple[Message, ...] = ()
    local: LocalDraft = field(default_factory=LocalDraft)
    remote: Mapping[UserId, Draft] = field(default_factory=lambda: _frozen({}))

    @classmethod
    def empty(cls, user_id: UserId) -> "ConversationState":
        return cls(user_id=user_id)

    @property
    def is_empty(self) -> bool:
        return not self.messages and not self.remote and self.local.phase is Phase.IDLE


# -- commands ---------------------------------------------------------------


@dataclass(frozen=True)
class TextChanged:
    content: str
    destination: Destination
    timestamp: Timestamp


@dataclass(frozen=True)
class SendDraft:
    timestamp: Timestamp
    expect_echo: bool = True


@dataclass(frozen=True)
class SendMessage:
    id: str
    content: str
    destination: Destination
    timestamp: Timestamp


@dataclass(frozen=True)
class PacketReceived:
    packet: WebPacket


@dataclass(frozen=True)
class Disconnected:
    pass


Command = Union[TextChanged, SendDraft, SendMessage, PacketReceived, Disconnected]


@dataclass(frozen=True)
class Transition:
    state: ConversationState
    outbound: List[WebPacket] = field(default_factory=list)


def apply(state: ConversationState, command: Command) -> Transition:
    """Return the snapshot that follows ``state`` after ``command``."""

    if isinstance(command, TextChanged):
        return _text_changed(state, command)
    if isinstance(command, SendDraft):
        return _send_draft(state, command)
    if isinstance(command, SendMessage):
        return _send_message(state, command)
    if isinstance(command, PacketReceived):
        return _receive(state, command.packet)
    if isinstance(command, Disconnected):
        return Transition(ConversationState.empty(state.user_id))
    raise TypeError(f"unsupported command: {type(command).__name__}")


def _require(value, what: str):
    if value is None:
        raise ProtocolViolation(f"{what} required")
    return value


def _end_time(start_time: Timestamp, end_time: Timestamp) -> Timestamp:
    if end_time < start_time:
        raise ProtocolViolation(f"EndDraft timestamp {end_time} precedes draft start {start_time}")
    return end_time


def _append(state: ConversationState, message: Message, **changes) -> ConversationState:
    return replace(state, messages=state.messages + (message,), **changes)


# -- local input --------------------------------------------------------------


def _text_changed(state: ConversationState, command: TextChanged) -> Transition:
    local = state.local
    if local.phase is Phase.IDLE:
        if not command.content:
            return Transition(state)
        draft = Draft(content=command.content, start_time=command.timestamp)
        pending = LocalDraft(phase=Phase.PENDING, destination=command.destination, draft=draft)
        packet = WebPacket(content=StartDraft(), destination=command.destination)
        return Transition(replace(state, local=pending), [packet])

    if command.destination != local.destination:
        logger.debug("ignoring input for %s while drafting to %s", command.destination, local.destination)
        return Transition(state)

    if command.content == local.draft.content:
        return Transition(state)
    updated = replace(local, draft=replace(local.draft, content=command.content))
    if local.phase is Phase.PENDING:
        return Transition(replace(state, local=updated))

    packet = WebPacket(content=Edit(id=local.draft.id, content=command.content), destination=local.destination)
    return Transition(replace(state, local=updated), [packet])


def _finalize_local(state: ConversationState, content: str, end_time: Timestamp) -> ConversationState:
    local = state.local
    start_time = _require(local.draft.start_time, "local draft start_time")
    message = Message(
        sender=state.user_id,
        destination=local.destination,
        content=content,
        id=local.draft.id,
        start_time=start_time,
        end_time=_end_time(start_time, end_time),
    )
    return _append(state, message, local=LocalDraft())


def _send_draft(state: ConversationState, command: SendDraft) -> Transition:
    local = state.local
    if local.phase is not Phase.ACTIVE:
        logger.debug("send ignored: local draft is %s", local.phase.value)
        return Transition(state)
    if not local.draft.content:
        return Transition(state)

    packet = WebPacket(
        content=EndDraft(id=local.draft.id, content=local.draft.content), destination=local.destination
    )
    if command.expect_echo:
        return Transition(state, [packet])
    # the local clock may step backwards
    end_time = max(command.timestamp, local.draft.start_time)
    return Transition(_finalize_local(state, local.draft.content, end_time), [packet])


def _send_message(state: ConversationState, command: SendMessage) -> Transition:
    message = Message(
        sender=state.user_id,
        destination=command.destination,
        content=command.content,
        id=command.id,
        start_time=command.timestamp,
        end_time=command.timestamp,
    )
    packet = WebPacket(content=NewMessage(id=command.id, content=command.content), destination=command.destination)
    return Transition(_append(state, message), [packet])


# -- inbound packets ------------------------------------------------------------


def _is_local(state: ConversationState, packet: WebPacket) -> bool:
    return packet.sender is None or packet.sender == state.user_id


def _peer_with_draft(state: ConversationState, draft_id: str) -> Optional[UserId]:
    for peer, draft in state.remote.items():
        if draft.id == draft_id:
            return peer
    return None


def _local_matches(state: ConversationState, draft_id: str) -> bool:
    return state.local.phase is Phase.ACTIVE and state.local.draft.id == draft_id


def _receive(state: ConversationState, packet: WebPacket) -> Transition:
    if isinstance(packet.destination, UnknownDestination):
        logger.debug("dropping packet for unknown destination %r", packet.destination.tag)
        return Transition(state)

    payload = packet.content
    if isinstance(payload, NewMessage):
        message = Message(
            sender=packet.sender if packet.sender is not None else state.user_id,
            destination=packet.destination,
            content=payload.content,
            id=payload.id,
            start_time=_require(packet.timestamp, "NewMessage timestamp"),
            end_time=packet.timestamp,
        )
        return Transition(_append(state, message))
    if isinstance(payload, StartDraft):
        return Transition(state)
    if isinstance(payload, NewDraft):
        return _receive_new_draft(state, packet, payload)
    if isinstance(payload, Edit):
        return _receive_edit(state, payload)
    if isinstance(payload, EndDraft):
        return _receive_end_draft(state, packet, payload)
    if isinstance(payload, DiscardDraft):
        return _receive_discard(state, payload)
    raise ProtocolViolation(f"unsupported payload: {type(payload).__name__}")


def _receive_new_draft(state: ConversationState, packet: WebPacket, payload: NewDraft) -> Transition:
    if _is_local(state, packet):
        local = state.local
        if local.phase is not Phase.PENDING:
            logger.debug("ignoring NewDraft %s while local draft is %s", payload.id, local.phase.value)
            return Transition(state)
        active = LocalDraft(
            phase=Phase.ACTIVE, destination=local.destination, draft=replace(local.draft, id=payload.id)
        )
        outbound = []
        if local.draft.content:
            outbound.append(
                WebPacket(content=Edit(id=payload.id, content=local.draft.content), destination=local.destination)
            )
        return Transition(replace(state, local=active), outbound)

    start_time = _require(packet.timestamp, "NewDraft timestamp")
    remote = dict(state.remote)
    if packet.sender in remote:
        logger.debug("replacing draft %s from %s", remote[packet.sender].id, packet.sender)
    remote[packet.sender] = Draft(id=payload.id, content="", start_time=start_time)
    return Transition(replace(state, remote=_frozen(remote)))


def _receive_edit(state: ConversationState, payload: Edit) -> Transition:
    if _local_matches(state, payload.id):
        local = replace(state.local, draft=replace(state.local.draft, content=payload.content))
        return Transition(replace(state, local=local))
    peer = _peer_with_draft(state, payload.id)
    if peer is None:
        return Transition(state)
    remote = dict(state.remote)
    remote[peer] = replace(remote[peer], content=payload.content)
    return Transition(replace(state, remote=_frozen(remote)))


def _receive_end_draft(state: ConversationState, packet: WebPacket, payload: EndDraft) -> Transition:
    if _local_matches(state, payload.id):
        end_time = _require(packet.timestamp, "EndDraft timestamp")
        return Transition(_finalize_local(state, payload.content, end_time))

    peer = _peer_with_draft(state, payload.id)
    if peer is None:
        return Transition(state)
    start_time = _require(state.remote[peer].start_time, "remote draft start_time")
    message = Message(
        sender=peer,
        destination=packet.destination,
        content=payload.content,
        id=payload.id,
        start_time=start_time,
        end_time=_end_time(start_time, _require(packet.timestamp, "EndDraft timestamp")),
    )
    remote = dict(state.remote)
    del remote[peer]
    return Transition(_append(state, message, remote=_frozen(remote)))


def _receive_discard(state: ConversationState, payload: DiscardDraft) -> Transition:
    if _local_matches(state, payload.id):
        return Transition(replace(state, local=LocalDraft()))
    peer = _peer_with_draft(state, payload.id)
    if peer is None:
        return Transition(state)
    remote = dict(state.remote)
    del remote[peer]
    return Transition(replace(state, remote=_frozen(remote)))