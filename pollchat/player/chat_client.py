#!/usr/bin/env python3
"""
Terminal client for a long-poll conversation.

Commands:
  - type a line and press enter to send it as a chat message
  - /flip N   flip tile N face up (game rooms)
  - /tiles    list the tiles seen so far
  - /quit     leave the conversation
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
from typing import Optional

from pollchat.client.cache import Player, Tile, TileChange
from pollchat.client.conversation import Conversation
from pollchat.client.session import ChatEntry, Session, SessionListener, SessionState
from pollchat.common.config import client_settings


def parse_args(argv: Optional[list[str]] = None):
    ap = argparse.ArgumentParser()
    ap.add_argument("--host")
    ap.add_argument("--port", type=int)
    ap.add_argument("--room")
    ap.add_argument("--name")
    ap.add_argument("--variant", choices=["chat", "game"])
    ap.add_argument("--buffered", action="store_true", help="don't rely on partial-data notifications")
    ap.add_argument("--verbose", action="store_true")
    return ap.parse_args(argv)


async def ainput(prompt: str) -> str:
    return await asyncio.to_thread(input, prompt)


class ConsoleListener(SessionListener):
    def __init__(self, conversation: Conversation):
        self.conversation = conversation
        self.finished = asyncio.Event()

    def _name(self, num: int) -> str:
        player = self.conversation.cache.players.get(num)
        if player and player.name:
            return player.name
        return f"player {num}"

    def on_status(self, key: str, text: str) -> None:
        print(f"\n[STATUS] {text}", flush=True)

    def on_state_changed(self, session: Session, old: SessionState, new: SessionState) -> None:
        if new.terminal:
            self.finished.set()

    def on_chat_message(self, session: Session, entry: ChatEntry) -> None:
        who = "You" if entry.is_self else self._name(entry.person_number)
        print(f"\n<{who}> {entry.text}", flush=True)

    def on_player_changed(self, num: int, player: Player) -> None:
        flags = []
        if player.typing:
            flags.append("typing")
        if not player.connected:
            flags.append("disconnected")
        suffix = f" ({', '.join(flags)})" if flags else ""
        print(f"\n[PLAYER] {num}: {player.name or '?'}{suffix}", flush=True)

    def on_tile_changed(self, num: int, tile: Tile, change: TileChange) -> None:
        if change.revealed:
            print(f"\n[TILE] {num} -> {tile.letter}", flush=True)

    def on_error(self, error: Exception) -> None:
        print(f"[ERR] {error}", flush=True)


def _print_tiles(conv: Conversation) -> None:
    if not conv.cache.tiles:
        print("(no tiles yet)")
        return
    for num, tile in sorted(conv.cache.tiles.items()):
        face = tile.letter if tile.facing_up else "?"
        print(f"  - #{num} [{face}] at ({tile.x / 10:.1f}, {tile.y / 10:.1f})")


async def main(argv: Optional[list[str]] = None):
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = client_settings(
        host=args.host,
        port=args.port,
        room_name=args.room,
        player_name=args.name,
        variant=args.variant,
        progressive=False if args.buffered else None,
    )

    conv = Conversation(settings)
    listener = ConsoleListener(conv)
    conv.add_listener(listener)
    print(f"[ChatClient] joining room '{settings.room_name}' at {settings.base_url}")
    conv.start()

    async def input_loop():
        while not listener.finished.is_set():
            line = (await ainput("")).rstrip("\n")
            if not line:
                continue
            if line == "/quit":
                return
            if line == "/tiles":
                _print_tiles(conv)
            elif line.startswith("/flip"):
                try:
                    n = int(line.split(maxsplit=1)[1])
                except (IndexError, ValueError):
                    print("Usage: /flip N")
                    continue
                if not conv.flip_tile(n):
                    print("[ERR] can't flip that tile now")
            elif not conv.send_message(line):
                print("[ERR] not in a conversation yet")

    t1 = asyncio.create_task(listener.finished.wait())
    t2 = asyncio.create_task(input_loop())
    try:
        await asyncio.wait({t1, t2}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for t in (t1, t2):
            t.cancel()
        conv.close()
        with contextlib.suppress(Exception):
            await conv.transport.aclose()  # type: ignore[attr-defined]
    if conv.state == SessionState.DONE:
        print("Conversation finished.")


def run():
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())


if __name__ == "__main__":
    run()
