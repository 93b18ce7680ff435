# server/room.py
import asyncio
import json
import time

import websockets

HOST_ID = "player1"
GUEST_ID = "player2"

WAITING = "waiting"
READY = "ready"
PLAYING = "playing"


class Room:
    """Signaling record for one two-player game, keyed by a 5-digit code"""

    MAX_PLAYERS = 2
    MAX_AGE = 60 * 60  # seconds before an abandoned room may be reused

    def __init__(self, code, host_name="Player 1", created_at=None):
        self.code = code
        self.created_at = created_at if created_at is not None else time.time()
        self.players = {HOST_ID: self._new_player(HOST_ID, host_name)}
        self.game_state = {
            "status": WAITING,
            "currentRound": 0,
            "player1Ready": False,
            "player2Ready": False,
        }
        self.clients = {}  # player_id -> websocket

    @staticmethod
    def _new_player(player_id, name):
        return {
            "id": player_id,
            "name": name,
            "connected": True,
            "role": None,
            "character": None,
            "rtcOffer": None,
            "rtcAnswer": None,
            "iceCandidates": [],
        }

    def is_full(self):
        return len(self.players) >= self.MAX_PLAYERS

    def has_connected_player(self):
        return any(p.get("connected") for p in self.players.values())

    def age(self, now=None):
        return (now if now is not None else time.time()) - self.created_at

    def is_stale(self, max_age=None, now=None):
        """Too old or abandoned, so its code can be handed out again"""
        max_age = self.MAX_AGE if max_age is None else max_age
        return self.age(now) >= max_age or not self.has_connected_player()

    def add_guest(self, name="Player 2"):
        self.players[GUEST_ID] = self._new_player(GUEST_ID, name)

    def mark_ready(self, player_id):
        """Mark a player ready; returns True once both players are ready"""
        self.game_state[f"{player_id}Ready"] = True
        return self.game_state["player1Ready"] and self.game_state["player2Ready"]

    def assign_roles_and_characters(self, rng):
        if not self.is_full():
            return False
        roles = ["player", "guide"]
        characters = ["ghost", "alien"]
        rng.shuffle(roles)
        rng.shuffle(characters)
        for player_id, role, character in zip((HOST_ID, GUEST_ID), roles, characters):
            self.players[player_id]["role"] = role
            self.players[player_id]["character"] = character
        self.game_state["status"] = READY
        return True

    def switch_roles(self):
        host, guest = self.players[HOST_ID], self.players[GUEST_ID]
        host["role"], guest["role"] = guest["role"], host["role"]
        self.game_state.update({
            "currentRound": self.game_state.get("currentRound", 0) + 1,
            "status": PLAYING,
            "player1Ready": False,
            "player2Ready": False,
        })

    def to_dict(self):
        return {
            "roomCode": self.code,
            "createdAt": int(self.created_at * 1000),
            "players": {pid: dict(p) for pid, p in self.players.items()},
            "gameState": dict(self.game_state),
        }

    async def broadcast_update(self):
        """Push the current room record to every connected member"""
        payload = json.dumps({"type": "room_update", "room": self.to_dict()})
        disconnected = set()

        async def _send_one(player_id, ws):
            try:
                await ws.send(payload)
            except websockets.ConnectionClosed:
                disconnected.add(player_id)

        await asyncio.gather(*(_send_one(pid, ws) for pid, ws in list(self.clients.items())))

        for player_id in disconnected:
            self.clients.pop(player_id, None)
