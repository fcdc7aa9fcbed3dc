"""Command line entry point: run the relay or replay frames through a store."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Dict, Iterable, List, TextIO

from aiohttp import web

from .config import RelayConfig
from .layout import DisplayMessage, RenderItem
from .packets import ProtocolViolation, dump_packet, parse_packet
from .relay import create_app
from .store import ConversationStore

logger = logging.getLogger(__name__)


class _FrameClock:
    """Clock driven by the ``ts`` field of simulated frames."""

    def __init__(self) -> None:
        self.now = 0

    def __call__(self) -> int:
        return self.now


def _render_item(item: RenderItem) -> Dict[str, Any]:
    if isinstance(item, DisplayMessage):
        return {
            "kind": "draft" if item.draft else "message",
            "start_row": item.start_row,
            "end_row": item.end_row,
            "sender": item.message.sender,
            "id": item.message.id,
            "content": item.message.content,
        }
    return {"kind": "spacer", "start_row": item.start_row, "end_row": item.end_row, "sender": item.sender}


def simulate(user_id: str, frames: Iterable[dict], output: TextIO, *, spacers: bool = False) -> ConversationStore:
    """Drive a store with JSON frames and write outbound packets and timelines.

    Frame types: ``packet`` (inbound wire packet), ``type`` (local input),
    ``send`` (send the local draft), ``message`` (send without drafting) and
    ``disconnect``.
    """

    clock = _FrameClock()
    store = ConversationStore(user_id, now_func=clock)

    def emit(message: Dict[str, Any]) -> None:
        output.write(json.dumps(message) + "\n")

    for frame in frames:
        frame_type = frame.get("t")
        if "ts" in frame:
            clock.now = int(frame["ts"])
        if frame_type == "packet":
            try:
                outbound = store.receive(parse_packet(frame.get("packet")))
            except ProtocolViolation as exc:
                logger.warning("dropping packet: %s", exc)
                emit({"t": "error", "message": str(exc)})
                continue
        elif frame_type == "type":
            outbound = store.type_text(frame["content"], frame["to"])
        elif frame_type == "send":
            outbound = store.send_draft(expect_echo=frame.get("expect_echo", True))
        elif frame_type == "message":
            outbound = store.send_message(frame["content"], frame["to"])
        elif frame_type == "disconnect":
            store.disconnect()
            outbound = []
        else:
            raise ValueError(f"unsupported frame type: {frame_type}")
        for packet in outbound:
            emit({"t": "outbound", "packet": dump_packet(packet)})

    for peer in store.peers():
        emit(
            {
                "t": "timeline",
                "peer": peer,
                "rows": [_render_item(item) for item in store.timeline(peer, spacers=spacers)],
            }
        )
    for peer, draft in store.remote_drafts.items():
        emit({"t": "draft", "peer": peer, "id": draft.id, "content": draft.content, "start_time": draft.start_time})
    return store


def _load_frames(handle: TextIO) -> List[dict]:
    """Read frames given as one JSON array, one JSON object, or JSON lines."""

    text = handle.read()
    try:
        document = json.loads(text) if text.strip() else []
    except json.JSONDecodeError:
        document = [json.loads(line) for line in text.splitlines() if line.strip()]

    frames = document if isinstance(document, list) else [document]
    for number, frame in enumerate(frames, start=1):
        if not isinstance(frame, dict):
            raise ValueError(f"frame {number} is not a JSON object")
    return frames


def _run_simulation(args: argparse.Namespace, output: TextIO) -> int:
    frames = _load_frames(args.file or sys.stdin)
    simulate(args.user, frames, output, spacers=args.spacers)
    return 0


def _run_serve(args: argparse.Namespace) -> int:
    config = RelayConfig(host=args.host, port=args.port, heartbeat_s=args.heartbeat or None)
    web.run_app(create_app(config), host=config.host, port=config.port)
    return 0


def main(argv: list[str] | None = None, output: TextIO | None = None) -> int:
    """Entry point for CLI commands."""

    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(description="Live draft chat relay and simulator")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (DEBUG, INFO, WARNING, ...)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    simulate_parser = subparsers.add_parser("simulate", help="Replay frames through a conversation store")
    simulate_parser.add_argument("--user", required=True, help="Local user id")
    simulate_parser.add_argument(
        "-f",
        "--file",
        type=argparse.FileType("r"),
        default=None,
        help="Path to JSON frames file; defaults to stdin",
    )
    simulate_parser.add_argument("--spacers", action="store_true", help="Pad gaps inside each thread")

    serve_parser = subparsers.add_parser("serve", help="Run the aiohttp relay server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to bind")
    serve_parser.add_argument(
        "--heartbeat",
        type=float,
        default=30.0,
        help="Seconds between websocket pings; 0 disables",
    )

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "simulate":
        return _run_simulation(args, output or sys.stdout)
    return _run_serve(args)


if __name__ == "__main__":  # pragma: no cover - convenience execution
    raise SystemExit(main())
