#!/usr/bin/env python3
"""
pygame window for game rooms: the tile board, the players and the chat.

The conversation runs on an asyncio loop in a background thread; the
pygame loop only reads the shared state and hands user intent over with
call_soon_threadsafe.

Requires: pygame installed (pip install pollchat[gui]).
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Tuple

import pygame

from pollchat.client.cache import Player, Tile, TileChange
from pollchat.client.conversation import Conversation
from pollchat.client.session import ChatEntry, Session, SessionListener, SessionState
from pollchat.common.config import client_settings


# one wire unit (tenth of an em) in pixels
UNIT_PX = 1.6
TILE_PX = 32
BOARD_ORIGIN = (20, 70)
WINDOW = (760, 560)


def parse_args():
    ap = argparse.ArgumentParser()
    ap.add_argument("--host")
    ap.add_argument("--port", type=int)
    ap.add_argument("--room")
    ap.add_argument("--name")
    return ap.parse_args()


@dataclass
class TileSprite:
    x: float
    y: float
    target: Tuple[float, float]
    started_at: float = 0.0
    duration: float = 0.0
    start: Tuple[float, float] = (0.0, 0.0)
    facing_up: bool = False
    letter: Optional[str] = None

    def position(self, now: float) -> Tuple[float, float]:
        if self.duration <= 0 or now >= self.started_at + self.duration:
            return self.target
        t = (now - self.started_at) / self.duration
        sx, sy = self.start
        tx, ty = self.target
        return sx + (tx - sx) * t, sy + (ty - sy) * t


@dataclass(frozen=True)
class PlayerRow:
    name: str
    typing: bool
    connected: bool


@dataclass(frozen=True)
class Snapshot:
    status: str
    state: SessionState
    sprites: Dict[int, TileSprite]
    players: Dict[int, PlayerRow]
    chat: List[str]


@dataclass
class UiState:
    """Written from the network thread, read from the pygame loop; both hold `lock`."""

    status: str = "connecting"
    state: SessionState = SessionState.CONNECTING
    sprites: Dict[int, TileSprite] = field(default_factory=dict)
    players: Dict[int, PlayerRow] = field(default_factory=dict)
    chat: List[str] = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def snapshot(self) -> Snapshot:
        with self.lock:
            return Snapshot(
                status=self.status,
                state=self.state,
                sprites={num: replace(sprite) for num, sprite in self.sprites.items()},
                players=dict(self.players),
                chat=list(self.chat),
            )


class BoardListener(SessionListener):
    """Mirrors session events into UiState so the pygame loop never touches the cache."""

    def __init__(self, state: UiState):
        self.state = state

    def on_status(self, key: str, text: str) -> None:
        with self.state.lock:
            self.state.status = text

    def on_state_changed(self, session: Session, old: SessionState, new: SessionState) -> None:
        with self.state.lock:
            self.state.state = new

    def on_chat_message(self, session: Session, entry: ChatEntry) -> None:
        with self.state.lock:
            row = self.state.players.get(entry.person_number)
            who = row.name if row and row.name else f"player {entry.person_number}"
            self.state.chat.append(f"{who}: {entry.text}")
            del self.state.chat[:-12]

    def on_player_changed(self, num: int, player: Player) -> None:
        with self.state.lock:
            self.state.players[num] = PlayerRow(player.name, player.typing, player.connected)

    def on_tile_changed(self, num: int, tile: Tile, change: TileChange) -> None:
        target = (tile.x * UNIT_PX, tile.y * UNIT_PX)
        with self.state.lock:
            sprite = self.state.sprites.get(num)
            if sprite is None or change.created:
                sprite = TileSprite(x=target[0], y=target[1], target=target)
                self.state.sprites[num] = sprite
            elif change.moved:
                now = time.monotonic()
                sprite.start = sprite.position(now)
                sprite.target = target
                sprite.started_at = now
                # slide at a speed proportional to the distance travelled
                sprite.duration = change.distance * 2.0 / 1000.0
            sprite.facing_up = tile.facing_up
            sprite.letter = tile.letter


class NetThread:
    def __init__(self, conversation: Conversation):
        self.conversation = conversation
        self.loop = asyncio.new_event_loop()
        self.thread = threading.Thread(target=self._run, daemon=True)

    def start(self):
        self.thread.start()

    def _run(self):
        asyncio.set_event_loop(self.loop)
        self.loop.call_soon(self.conversation.start)
        self.loop.run_forever()

    def call(self, fn: Callable[..., object], *args):
        self.loop.call_soon_threadsafe(fn, *args)

    def close(self):
        def _stop():
            self.conversation.close()
            self.loop.stop()

        self.loop.call_soon_threadsafe(_stop)
        self.thread.join(timeout=2.0)
        with contextlib.suppress(Exception):
            self.loop.run_until_complete(self.conversation.transport.aclose())  # type: ignore[attr-defined]
        self.loop.close()


def _tile_at(sprites: Dict[int, TileSprite], pos: Tuple[int, int]) -> Optional[int]:
    now = time.monotonic()
    for num, sprite in sprites.items():
        x, y = sprite.position(now)
        rect = pygame.Rect(BOARD_ORIGIN[0] + x, BOARD_ORIGIN[1] + y, TILE_PX, TILE_PX)
        if rect.collidepoint(*pos):
            return num
    return None


def is_input_focus_event(ev) -> bool:
    # ACTIVEEVENT also fires for mouse hover (APPMOUSEFOCUS); only keyboard focus counts
    return ev.type == pygame.ACTIVEEVENT and bool(getattr(ev, "state", 0) & pygame.APPINPUTFOCUS)


def main():
    args = parse_args()
    settings = client_settings(host=args.host, port=args.port, room_name=args.room, player_name=args.name, variant="game")

    conv = Conversation(settings)
    state = UiState()
    conv.add_listener(BoardListener(state))
    net = NetThread(conv)
    net.start()

    pygame.init()
    screen = pygame.display.set_mode(WINDOW)
    pygame.display.set_caption("pollchat")
    font = pygame.font.SysFont(None, 28)
    font_small = pygame.font.SysFont(None, 22)

    clock = pygame.time.Clock()
    running = True
    text = ""

    def draw_text(txt, x, y, col=(230, 230, 235), f=font):
        s = f.render(txt, True, col)
        screen.blit(s, (x, y))

    while running:
        clock.tick(60)
        snap = state.snapshot()
        for ev in pygame.event.get():
            if ev.type == pygame.QUIT:
                running = False
            elif is_input_focus_event(ev):
                net.call(conv.focus if ev.gain else conv.blur)
            elif ev.type == pygame.KEYDOWN:
                if ev.key == pygame.K_ESCAPE:
                    running = False
                elif ev.key in (pygame.K_RETURN, pygame.K_KP_ENTER):
                    if snap.state == SessionState.IN_PROGRESS:
                        net.call(conv.submit_input)
                        text = ""
                elif ev.key == pygame.K_BACKSPACE:
                    text = text[:-1]
                    net.call(conv.set_input_text, text)
                elif ev.unicode and ev.unicode.isprintable():
                    text += ev.unicode
                    net.call(conv.set_input_text, text)
            elif ev.type == pygame.MOUSEBUTTONDOWN and ev.button == 1:
                num = _tile_at(snap.sprites, ev.pos)
                if num is not None:
                    net.call(conv.flip_tile, num)

        screen.fill((18, 18, 24))
        draw_text(f"Room {settings.room_name}  You: {settings.player_name}", 20, 15)
        draw_text(snap.status, 20, 42, f=font_small)

        now = time.monotonic()
        for sprite in snap.sprites.values():
            x, y = sprite.position(now)
            rect = pygame.Rect(BOARD_ORIGIN[0] + x, BOARD_ORIGIN[1] + y, TILE_PX, TILE_PX)
            col = (235, 225, 190) if sprite.facing_up else (70, 120, 80)
            pygame.draw.rect(screen, col, rect, border_radius=4)
            pygame.draw.rect(screen, (20, 20, 25), rect, 2, border_radius=4)
            if sprite.facing_up and sprite.letter:
                label = font.render(sprite.letter, True, (10, 10, 10))
                screen.blit(label, (rect.centerx - label.get_width() // 2, rect.centery - label.get_height() // 2))

        px = WINDOW[0] - 220
        draw_text("Players", px, 70, f=font_small)
        y = 95
        for num, player in sorted(snap.players.items()):
            col = (120, 120, 120) if not player.connected else (230, 230, 235)
            draw_text(f"{player.name or num}{' ...' if player.typing else ''}", px, y, col=col, f=font_small)
            y += 22

        y = WINDOW[1] - 60 - 20 * len(snap.chat)
        for line in snap.chat:
            draw_text(line, 20, y, f=font_small)
            y += 20

        enabled = snap.state == SessionState.IN_PROGRESS
        box = pygame.Rect(20, WINDOW[1] - 45, WINDOW[0] - 40, 30)
        pygame.draw.rect(screen, (40, 40, 50) if enabled else (28, 28, 32), box, border_radius=4)
        draw_text(text, box.x + 8, box.y + 6, f=font_small)

        if snap.state == SessionState.DONE:
            draw_text("CONVERSATION FINISHED", 20, WINDOW[1] - 90, col=(240, 170, 90))

        pygame.display.flip()

    net.close()
    pygame.quit()


if __name__ == "__main__":
    main()
