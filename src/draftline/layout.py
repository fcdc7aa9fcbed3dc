"""Timeline layout for a two-party conversation.

Each message contributes a start and an end event. Events are sorted by time
and numbered with a single increasing cell counter, so no two events share a
grid row; a message occupies rows ``[start cell, end cell + 1)``. Only the
order of events survives, not their durations.
"""

from __future__ import annotations

import heapq
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .drafts import Draft, Message
from .packets import Timestamp, UserDestination, UserId


@dataclass(frozen=True)
class TimeEvent:
    time: Timestamp
    sender: UserId
    index: int
    start: bool


@dataclass(frozen=True)
class DisplayMessage:
    start_row: int
    end_row: int
    message: Message
    draft: bool = False

    @property
    def sender(self) -> UserId:
        return self.message.sender


@dataclass(frozen=True)
class Spacer:
    start_row: int
    end_row: int
    sender: UserId
    key: str


RenderItem = Union[DisplayMessage, Spacer]


def _start_row(item: RenderItem) -> int:
    return item.start_row


def build_events(messages: Sequence[Message]) -> List[TimeEvent]:
    """Return start/end events ordered by time; ties keep source order."""

    events: List[TimeEvent] = []
    for index, message in enumerate(messages):
        events.append(TimeEvent(message.start_time, message.sender, index, True))
        events.append(TimeEvent(message.end_time, message.sender, index, False))
    events.sort(key=lambda event: event.time)
    return events


def assign_rows(messages: Sequence[Message], drafts: Iterable[int] = ()) -> List[DisplayMessage]:
    """Assign grid rows to ``messages``; ``drafts`` holds indices of live drafts."""

    draft_indices = set(drafts)
    rows: Dict[int, List[int]] = {}
    for cell, event in enumerate(build_events(messages), start=1):
        if event.start:
            rows[event.index] = [cell, cell + 1]
        elif event.index in rows:
            rows[event.index][1] = cell + 1
        # an end before its start has no row to close

    return [
        DisplayMessage(start_row=start, end_row=end, message=messages[index], draft=index in draft_indices)
        for index, (start, end) in sorted(rows.items())
    ]


def personal_thread(display: Iterable[DisplayMessage], sender: UserId) -> List[DisplayMessage]:
    return sorted((dm for dm in display if dm.sender == sender), key=_start_row)


def merge_threads(*threads: Sequence[RenderItem]) -> List[RenderItem]:
    """Stable merge of start-row ordered threads; earlier threads win ties."""

    return list(heapq.merge(*threads, key=_start_row))


def insert_spacers(merged: Sequence[RenderItem]) -> List[RenderItem]:
    """Pad the gaps inside each sender's thread with :class:`Spacer` items.

    Every gap is padded, a single empty row included. Purely decorative and
    independent from row assignment; ``merged`` must be ordered by start row.
    """

    last_end: Dict[UserId, int] = {}
    spacers: List[Spacer] = []
    for item in merged:
        if not isinstance(item, DisplayMessage):
            continue
        previous = last_end.get(item.sender)
        if previous is not None and item.start_row > previous:
            spacers.append(
                Spacer(start_row=previous, end_row=item.start_row, sender=item.sender, key=f"spacer-{len(spacers)}")
            )
        last_end[item.sender] = max(item.end_row, previous or 0)
    spacers.sort(key=_start_row)
    return merge_threads(list(merged), spacers)


def involves(message: Message, peer: UserId) -> bool:
    return message.sender == peer or message.destination == UserDestination(peer)


def draft_message(
    draft: Draft, sender: UserId, recipient: UserId, now: Optional[Timestamp] = None
) -> Optional[Message]:
    """Materialize a live draft as a provisional message ending at ``now``."""

    if draft.start_time is None:
        return None
    end_time = draft.start_time if now is None else max(now, draft.start_time)
    return Message(
        sender=sender,
        destination=UserDestination(recipient),
        content=draft.content,
        id=draft.id or "",
        start_time=draft.start_time,
        end_time=end_time,
    )


def layout_conversation(
    messages: Sequence[Message],
    user: UserId,
    peer: UserId,
    *,
    drafts: Optional[Mapping[UserId, Draft]] = None,
    now: Optional[Timestamp] = None,
    spacers: bool = False,
) -> List[RenderItem]:
    """Lay out the conversation between ``user`` and ``peer`` as merged rows.

    ``drafts`` maps ``user`` and/or ``peer`` to their live draft, which is
    shown as a row ending at ``now``.
    """

    selected = [message for message in messages if involves(message, peer)]
    draft_indices = []
    for sender, recipient in ((user, peer), (peer, user)):
        draft = (drafts or {}).get(sender)
        if draft is None:
            continue
        provisional = draft_message(draft, sender, recipient, now)
        if provisional is not None:
            draft_indices.append(len(selected))
            selected.append(provisional)

    display = assign_rows(selected, draft_indices)
    merged = merge_threads(personal_thread(display, user), personal_thread(display, peer))
    if spacers:
        return insert_spacers(merged)
    return merged


def conversation_peers(
    messages: Iterable[Message], drafts: Mapping[UserId, Draft], user: UserId
) -> List[UserId]:
    """Return everyone ``user`` has a conversation with, in first-seen order."""

    peers: Dict[UserId, None] = {}
    for message in messages:
        peers.setdefault(message.sender, None)
        if isinstance(message.destination, UserDestination):
            peers.setdefault(message.destination.user, None)
    for sender in drafts:
        peers.setdefault(sender, None)
    peers.pop(user, None)
    return list(peers)
