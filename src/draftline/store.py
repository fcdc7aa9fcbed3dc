from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from . import identifiers
from .drafts import (
    Command,
    ConversationState,
    Disconnected,
    Draft,
    LocalDraft,
    Message,
    PacketReceived,
    SendDraft,
    SendMessage,
    TextChanged,
    apply,
)
from .layout import RenderItem, conversation_peers, layout_conversation
from .packets import Destination, Timestamp, UserDestination, UserId, WebPacket, decode_frame

logger = logging.getLogger(__name__)

Listener = Callable[[ConversationState], None]


def _now_us() -> int:
    return int(time.time() * 1_000_000)


class ConversationStore:
    """Single writer for the conversation snapshot of one local user.

    Commands are applied one at a time. A command that raises leaves the
    previous snapshot in place.
    """

    def __init__(
        self,
        user_id: UserId,
        *,
        now_func: Callable[[], Timestamp] = _now_us,
        id_factory: Callable[[], bytes] = identifiers.new_identifier,
    ) -> None:
        self._now = now_func
        self._new_id = id_factory
        self._state = ConversationState.empty(user_id)
        self._listeners: List[Listener] = []

    @property
    def state(self) -> ConversationState:
        return self._state

    @property
    def user_id(self) -> UserId:
        return self._state.user_id

    @property
    def messages(self) -> Tuple[Message, ...]:
        return self._state.messages

    @property
    def local_draft(self) -> LocalDraft:
        return self._state.local

    @property
    def remote_drafts(self) -> Mapping[UserId, Draft]:
        return self._state.remote

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            return

    def dispatch(self, command: Command) -> List[WebPacket]:
        """Apply ``command`` and return the packets that must be sent."""

        transition = apply(self._state, command)
        changed = transition.state is not self._state
        self._state = transition.state
        if changed:
            for listener in list(self._listeners):
                listener(self._state)
        return transition.outbound

    def type_text(self, content: str, recipient: UserId | Destination) -> List[WebPacket]:
        destination = UserDestination(recipient) if isinstance(recipient, str) else recipient
        return self.dispatch(TextChanged(content=content, destination=destination, timestamp=self._now()))

    def send_draft(self, *, expect_echo: bool = True) -> List[WebPacket]:
        return self.dispatch(SendDraft(timestamp=self._now(), expect_echo=expect_echo))

    def send_message(self, content: str, recipient: UserId | Destination) -> List[WebPacket]:
        destination = UserDestination(recipient) if isinstance(recipient, str) else recipient
        command = SendMessage(
            id=identifiers.encode(self._new_id()),
            content=content,
            destination=destination,
            timestamp=self._now(),
        )
        return self.dispatch(command)

    def receive(self, packet: WebPacket) -> List[WebPacket]:
        return self.dispatch(PacketReceived(packet))

    def receive_frame(self, text: str) -> List[WebPacket]:
        return self.receive(decode_frame(text))

    def disconnect(self) -> None:
        logger.debug("resetting conversation state for %s", self.user_id)
        self.dispatch(Disconnected())

    def peers(self) -> List[UserId]:
        return conversation_peers(self._state.messages, self._state.remote, self.user_id)

    def timeline(self, peer: UserId, *, live: bool = False, spacers: bool = False) -> List[RenderItem]:
        """Merged display rows for the conversation with ``peer``.

        With ``live`` the in-progress drafts of both sides are laid out too,
        ending at the current time.
        """

        state = self._state
        drafts: Optional[Dict[UserId, Draft]] = None
        if live:
            drafts = {}
            if peer in state.remote:
                drafts[peer] = state.remote[peer]
            if state.local.destination == UserDestination(peer):
                drafts[state.user_id] = state.local.draft
        return layout_conversation(
            state.messages,
            state.user_id,
            peer,
            drafts=drafts,
            now=self._now() if live else None,
            spacers=spacers,
        )
