from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict

from .packets import UserId, WebPacket

Callback = Callable[[WebPacket], None]


class AlreadyConnected(Exception):
    pass


@dataclass
class Connection:
    user_id: UserId
    callback: Callback

    def deliver(self, packet: WebPacket) -> None:
        self.callback(packet)


class ConnectionHub:
    """Registers one live connection per user and delivers packets to it."""

    def __init__(self) -> None:
        self._connections: Dict[UserId, Connection] = {}

    def connect(self, user_id: UserId, callback: Callback) -> Connection:
        if user_id in self._connections:
            raise AlreadyConnected(user_id)
        connection = Connection(user_id=user_id, callback=callback)
        self._connections[user_id] = connection
        return connection

    def disconnect(self, connection: Connection) -> None:
        if self._connections.get(connection.user_id) is connection:
            self._connections.pop(connection.user_id, None)

    def is_connected(self, user_id: UserId) -> bool:
        return user_id in self._connections

    def deliver(self, user_id: UserId, packet: WebPacket) -> bool:
        connection = self._connections.get(user_id)
        if connection is None:
            return False
        connection.deliver(packet)
        return True
