from __future__ import annotations

from dataclasses import dataclass


@dataclass
class RelayConfig:
    host: str = "127.0.0.1"
    port: int = 8000
    heartbeat_s: float | None = 30.0
    max_msg_size: int = 1_048_576
    outbound_queue_size: int = 1000


@dataclass
class ClientConfig:
    base_url: str = "http://127.0.0.1:8000"
    user_id: str = ""
    heartbeat_s: float | None = 30.0
    expect_echo: bool = True

    def updates_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/updates/{self.user_id}"
