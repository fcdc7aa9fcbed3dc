"""Wire packets exchanged over the per-user websocket channel."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from . import identifiers
from .identifiers import IdentifierError

UserId = str
Timestamp = int


class ProtocolViolation(ValueError):
    """Raised when a packet is malformed or cannot be processed."""


@dataclass(frozen=True)
class UserDestination:
    user: UserId


@dataclass(frozen=True)
class UnknownDestination:
    """A destination variant this client does not understand; delivers to nobody."""

    tag: str
    value: Any = None


Destination = Union[UserDestination, UnknownDestination]


@dataclass(frozen=True)
class NewMessage:
    id: str
    content: str


@dataclass(frozen=True)
class StartDraft:
    pass


@dataclass(frozen=True)
class NewDraft:
    id: str


@dataclass(frozen=True)
class EndDraft:
    id: str
    content: str


@dataclass(frozen=True)
class Edit:
    id: str
    content: str


@dataclass(frozen=True)
class DiscardDraft:
    id: str


Payload = Union[NewMessage, StartDraft, NewDraft, EndDraft, Edit, DiscardDraft]

_ID_ONLY = {"NewDraft": NewDraft, "DiscardDraft": DiscardDraft}
_ID_AND_CONTENT = {"NewMessage": NewMessage, "EndDraft": EndDraft, "Edit": Edit}


@dataclass(frozen=True)
class WebPacket:
    """A payload plus its envelope (destination, sender, timestamp)."""

    content: Payload
    destination: Destination
    sender: Optional[UserId] = None
    timestamp: Optional[Timestamp] = None

    def stamped(self, sender: UserId, timestamp: Timestamp) -> "WebPacket":
        return WebPacket(content=self.content, destination=self.destination, sender=sender, timestamp=timestamp)

    def addressed_to(self, destination: Destination) -> "WebPacket":
        return WebPacket(
            content=self.content, destination=destination, sender=self.sender, timestamp=self.timestamp
        )


def variant_name(payload: Payload) -> str:
    return type(payload).__name__


def parse_destination(value: Any) -> Destination:
    if not isinstance(value, dict) or len(value) != 1:
        raise ProtocolViolation("destination must be an object with exactly one variant")
    ((tag, inner),) = value.items()
    if tag == "User":
        if not isinstance(inner, str):
            raise ProtocolViolation("User destination must be a string")
        return UserDestination(inner)
    return UnknownDestination(tag, inner)


def dump_destination(destination: Destination) -> Dict[str, Any]:
    if isinstance(destination, UserDestination):
        return {"User": destination.user}
    return {destination.tag: destination.value}


def _wire_id(body: Dict[str, Any], variant: str) -> str:
    try:
        return identifiers.from_wire(body.get("uuid"))
    except IdentifierError as exc:
        raise ProtocolViolation(f"{variant}: {exc}") from exc


def parse_payload(value: Any) -> Payload:
    if not isinstance(value, dict):
        raise ProtocolViolation("content must be an object")
    # serde-style externally tagged enum; a null value is an unpopulated variant
    populated = [(name, body) for name, body in value.items() if body is not None or name == "StartDraft"]
    if not populated:
        raise ProtocolViolation("packet has no content variant")
    if len(populated) > 1:
        names = ", ".join(sorted(name for name, _ in populated))
        raise ProtocolViolation(f"packet has multiple content variants: {names}")

    ((name, body),) = populated
    if name == "StartDraft":
        return StartDraft()
    if name in _ID_ONLY:
        if not isinstance(body, dict):
            raise ProtocolViolation(f"{name} body must be an object")
        return _ID_ONLY[name](id=_wire_id(body, name))
    if name in _ID_AND_CONTENT:
        if not isinstance(body, dict):
            raise ProtocolViolation(f"{name} body must be an object")
        content = body.get("content")
        if not isinstance(content, str):
            raise ProtocolViolation(f"{name} requires string content")
        return _ID_AND_CONTENT[name](id=_wire_id(body, name), content=content)
    raise ProtocolViolation(f"unknown content variant: {name}")


def dump_payload(payload: Payload) -> Dict[str, Any]:
    name = variant_name(payload)
    if isinstance(payload, StartDraft):
        return {name: None}
    body: Dict[str, Any] = {"uuid": identifiers.to_wire(payload.id)}
    if isinstance(payload, (NewMessage, EndDraft, Edit)):
        body["content"] = payload.content
    return {name: body}


def parse_packet(frame: Any) -> WebPacket:
    """Validate a decoded JSON object and build a :class:`WebPacket`."""

    if not isinstance(frame, dict):
        raise ProtocolViolation("packet must be an object")
    if "content" not in frame:
        raise ProtocolViolation("packet content required")
    if "destination" not in frame:
        raise ProtocolViolation("packet destination required")

    sender = frame.get("sender")
    if sender is not None and not isinstance(sender, str):
        raise ProtocolViolation("sender must be a string")
    timestamp = frame.get("timestamp")
    if timestamp is not None and (isinstance(timestamp, bool) or not isinstance(timestamp, int)):
        raise ProtocolViolation("timestamp must be an integer")

    return WebPacket(
        content=parse_payload(frame["content"]),
        destination=parse_destination(frame["destination"]),
        sender=sender,
        timestamp=timestamp,
    )


def dump_packet(packet: WebPacket) -> Dict[str, Any]:
    frame: Dict[str, Any] = {
        "content": dump_payload(packet.content),
        "destination": dump_destination(packet.destination),
    }
    if packet.sender is not None:
        frame["sender"] = packet.sender
    if packet.timestamp is not None:
        frame["timestamp"] = packet.timestamp
    return frame


def decode_frame(text: str) -> WebPacket:
    try:
        frame = json.loads(text)
    except (TypeError, ValueError) as exc:
        raise ProtocolViolation("malformed json") from exc
    return parse_packet(frame)


def encode_frame(packet: WebPacket) -> str:
    return json.dumps(dump_packet(packet))
