# server/room_manager.py
import asyncio
import os
import random
from typing import Dict, Optional

from candymaze.errors import (
    BadRequest, GameInProgress, InvalidHost, RoomCodeUnavailable, RoomExpired,
    RoomFull, RoomNotFound,
)
from .room import GUEST_ID, HOST_ID, WAITING, Room


class RoomManager:
    """Owns every room record and the sockets subscribed to it"""

    CODE_ATTEMPTS = 5

    def __init__(self, max_age=None, rng=None):
        self.rooms: Dict[str, Room] = {}
        self.client_to_room: Dict[int, tuple] = {}  # id(websocket) -> (code, player_id)
        self.max_age = max_age if max_age is not None else float(
            os.getenv("CANDY_ROOM_MAX_AGE_SECS", str(Room.MAX_AGE)))
        self.rng = rng or random.Random()
        self.retry_delay = 0.1  # seconds between code attempts
        self.cleanup_interval = 60  # seconds
        self._cleanup_task = None

    async def start(self):
        """Start the room manager"""
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        print("[Room] Room Manager started")

    async def stop(self):
        """Stop the room manager and drop all rooms"""
        if self._cleanup_task:
            self._cleanup_task.cancel()
        self.rooms.clear()
        self.client_to_room.clear()
        print("[Room] Room Manager stopped")

    # -- codes --------------------------------------------------------------

    def generate_room_code(self) -> str:
        return str(self.rng.randint(10000, 99999))

    def is_code_taken(self, code: str, now=None) -> bool:
        room = self.rooms.get(code)
        if room is None:
            return False
        return not room.is_stale(self.max_age, now)

    # -- room lifecycle -----------------------------------------------------

    async def create_room(self, websocket, name="Player 1") -> Room:
        code = None
        for attempt in range(self.CODE_ATTEMPTS):
            candidate = self.generate_room_code()
            if not self.is_code_taken(candidate):
                code = candidate
                break
            print(f"[Room] Code {candidate} is taken (attempt {attempt + 1})")
            await asyncio.sleep(self.retry_delay)
        if code is None:
            raise RoomCodeUnavailable()

        if code in self.rooms:
            print(f"[Room] Reusing stale room code {code}")
            self._drop_room(code)

        room = Room(code, name)
        room.clients[HOST_ID] = websocket
        self.rooms[code] = room
        self.client_to_room[id(websocket)] = (code, HOST_ID)
        print(f"[Room] Created room {code} for {name!r}")
        await room.broadcast_update()
        return room

    async def join_room(self, websocket, code, name="Player 2", now=None) -> Room:
        room = self.rooms.get(code)
        if room is None:
            raise RoomNotFound()

        if room.age(now) > self.max_age:
            self._drop_room(code)
            print(f"[Room] Room {code} expired on join")
            raise RoomExpired()

        host = room.players.get(HOST_ID)
        if host is None:
            raise InvalidHost("Room is invalid - no host found")
        if not host.get("connected"):
            raise InvalidHost()
        if GUEST_ID in room.players:
            raise RoomFull()
        status = room.game_state.get("status")
        if status and status != WAITING:
            raise GameInProgress()

        room.add_guest(name)
        room.clients[GUEST_ID] = websocket
        self.client_to_room[id(websocket)] = (code, GUEST_ID)
        print(f"[Room] {name!r} joined room {code}")
        await room.broadcast_update()
        return room

    def get_room_for_client(self, websocket) -> Optional[tuple]:
        """Returns (room, player_id) for a subscribed socket, or None"""
        entry = self.client_to_room.get(id(websocket))
        if entry is None:
            return None
        code, player_id = entry
        room = self.rooms.get(code)
        if room is None:
            return None
        return room, player_id

    def _require(self, websocket):
        found = self.get_room_for_client(websocket)
        if found is None:
            raise BadRequest("Not in a room")
        return found

    async def set_offer(self, websocket, signal):
        room, player_id = self._require(websocket)
        room.players[player_id]["rtcOffer"] = signal
        await room.broadcast_update()

    async def set_answer(self, websocket, signal):
        room, player_id = self._require(websocket)
        room.players[player_id]["rtcAnswer"] = signal
        await room.broadcast_update()

    async def add_ice_candidate(self, websocket, candidate):
        room, player_id = self._require(websocket)
        room.players[player_id]["iceCandidates"].append(candidate)
        await room.broadcast_update()

    async def set_ready(self, websocket):
        room, player_id = self._require(websocket)
        if room.mark_ready(player_id) and room.assign_roles_and_characters(self.rng):
            roles = {pid: p["role"] for pid, p in room.players.items()}
            print(f"[Room] Room {room.code} ready, roles {roles}")
        await room.broadcast_update()

    async def switch_roles(self, websocket):
        room, _ = self._require(websocket)
        if not room.is_full():
            raise BadRequest("Both players are needed to switch roles")
        room.switch_roles()
        print(f"[Room] Room {room.code} switched roles, round {room.game_state['currentRound']}")
        await room.broadcast_update()

    async def disconnect(self, websocket):
        """Mark the socket's player as gone; the host leaving alone deletes the room"""
        found = self.get_room_for_client(websocket)
        self.client_to_room.pop(id(websocket), None)
        if found is None:
            return
        room, player_id = found
        room.players[player_id]["connected"] = False
        room.clients.pop(player_id, None)
        print(f"[Room] {player_id} disconnected from room {room.code}")

        guest = room.players.get(GUEST_ID)
        if player_id == HOST_ID and not (guest and guest.get("connected")):
            self._drop_room(room.code)
            print(f"[Room] Deleted room {room.code}: nobody left")
            return
        await room.broadcast_update()

    async def delete_room(self, websocket):
        found = self.get_room_for_client(websocket)
        if found is None:
            return
        room, player_id = found
        if player_id != HOST_ID:
            raise BadRequest("Only the host can delete the room")
        self._drop_room(room.code)
        print(f"[Room] Host deleted room {room.code}")
        # the guest still learns its opponent is gone
        room.players[HOST_ID]["connected"] = False
        room.clients.pop(HOST_ID, None)
        await room.broadcast_update()

    async def remove_client(self, websocket):
        """Called when a socket closes without an explicit disconnect"""
        if id(websocket) in self.client_to_room:
            await self.disconnect(websocket)

    def _drop_room(self, code):
        room = self.rooms.pop(code, None)
        if room is None:
            return
        for client_id, (room_code, _) in list(self.client_to_room.items()):
            if room_code == code:
                del self.client_to_room[client_id]

    # -- stats and cleanup --------------------------------------------------

    def get_room_stats(self) -> Dict:
        """Get statistics about all rooms"""
        room_details = []
        for code, room in self.rooms.items():
            room_details.append({
                "room_code": code,
                "players": len(room.players),
                "connected": sum(1 for p in room.players.values() if p.get("connected")),
                "max_players": room.MAX_PLAYERS,
                "status": room.game_state.get("status"),
                "round": room.game_state.get("currentRound", 0),
                "created_at": room.created_at,
            })
        return {
            "total_rooms": len(self.rooms),
            "active_rooms": sum(1 for room in self.rooms.values() if room.has_connected_player()),
            "total_players": sum(r["connected"] for r in room_details),
            "rooms": room_details,
        }

    def cleanup_stale_rooms(self):
        # only abandoned rooms; live rooms past max age expire on the next join
        stale = [code for code, room in self.rooms.items() if not room.has_connected_player()]
        for code in stale:
            self._drop_room(code)
            print(f"[Room] Cleaned up room: {code}")
        return stale

    async def _cleanup_loop(self):
        """Periodic cleanup of stale rooms"""
        try:
            while True:
                await asyncio.sleep(self.cleanup_interval)
                self.cleanup_stale_rooms()
                if self.rooms:
                    stats = self.get_room_stats()
                    print(f"[Room] Stats - Active: {stats['active_rooms']}, "
                          f"Total: {stats['total_rooms']}, Players: {stats['total_players']}")
        except asyncio.CancelledError:
            pass


# Global room manager instance
room_manager = RoomManager()
