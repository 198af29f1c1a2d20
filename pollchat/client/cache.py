from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Optional

from pollchat.common.protocol import PlayerName, PlayerStatus, TileUpdate


@dataclass
class Player:
    name: str = ""
    typing: bool = False
    connected: bool = True


@dataclass
class Tile:
    x: int
    y: int
    facing_up: bool = False
    letter: Optional[str] = None


@dataclass(frozen=True)
class TileChange:
    created: bool
    moved: bool
    revealed: bool
    # distance travelled in tenths of a unit, 0 when the tile didn't move
    distance: float = 0.0


class PlayerTileCache:
    """Last known attributes of every participant and board tile, keyed by number."""

    def __init__(self):
        self.players: Dict[int, Player] = {}
        self.tiles: Dict[int, Tile] = {}

    def get_player(self, num: int) -> Player:
        player = self.players.get(num)
        if player is None:
            player = self.players[num] = Player()
        return player

    def get_tile(self, num: int) -> Optional[Tile]:
        return self.tiles.get(num)

    def apply_player_name(self, msg: PlayerName) -> Player:
        player = self.get_player(msg.num)
        player.name = msg.name
        return player

    def apply_player_status(self, msg: PlayerStatus) -> Player:
        player = self.get_player(msg.num)
        player.typing = msg.typing
        player.connected = msg.connected
        return player

    def apply_tile(self, msg: TileUpdate) -> TileChange:
        tile = self.tiles.get(msg.num)
        created = tile is None
        moved = False
        distance = 0.0

        if tile is None:
            tile = self.tiles[msg.num] = Tile(x=msg.x, y=msg.y)
        elif (msg.x, msg.y) != (tile.x, tile.y):
            moved = True
            distance = math.hypot(tile.x - msg.x, tile.y - msg.y)
            tile.x = msg.x
            tile.y = msg.y

        revealed = False
        # facing up is a one-way latch
        if msg.facing_up and not tile.facing_up:
            tile.facing_up = True
            tile.letter = msg.letter
            revealed = True

        return TileChange(created=created, moved=moved, revealed=revealed, distance=distance)
