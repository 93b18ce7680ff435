# client/signaling.py - websocket client for the room signaling server
import asyncio
import itertools
import json

import websockets

from candymaze.errors import room_error_from_code


class SignalingClient:
    """Talks to server/main.py.

    ``create_room``/``join_room`` are awaited because the lobby needs their
    answer. Everything else is queued fire-and-forget from synchronous game
    code; failures are only logged. Room pushes go to ``on_room_update``.
    """

    def __init__(self, url, connect=None):
        self.url = url
        self._connect = connect or websockets.connect
        self.websocket = None
        self.on_room_update = None
        self.room_code = None
        self.player_id = None
        self._ids = itertools.count(1)
        self._pending = {}
        self._outbox = None
        self._tasks = []

    @property
    def connected(self):
        return self.websocket is not None

    async def connect(self):
        self.websocket = await self._connect(self.url)
        self._outbox = asyncio.Queue()
        self._tasks = [
            asyncio.create_task(self._reader()),
            asyncio.create_task(self._writer()),
        ]
        print(f"[Room] Connected to signaling server {self.url}")

    async def close(self):
        for task in self._tasks:
            task.cancel()
        self._tasks = []
        if self.websocket is not None:
            try:
                await self.websocket.close()
            except websockets.ConnectionClosed:
                pass
            self.websocket = None
        self._fail_pending(ConnectionError("Signaling connection closed"))

    # -- requests -----------------------------------------------------------

    def _enqueue(self, op, **fields):
        request_id = next(self._ids)
        self._outbox.put_nowait(json.dumps({"op": op, "id": request_id, **fields}))
        return request_id

    async def request(self, op, **fields):
        """Send one op and wait for its response; raises the matching RoomError"""
        if self.websocket is None:
            raise ConnectionError("Not connected to the signaling server")
        future = asyncio.get_running_loop().create_future()
        request_id = self._enqueue(op, **fields)
        self._pending[request_id] = future
        return await future

    def fire(self, op, **fields):
        if self.websocket is None:
            print(f"[Room] Dropping {op}: not connected")
            return None
        return self._enqueue(op, **fields)

    async def create_room(self, name="Player 1"):
        response = await self.request("createRoom", name=name)
        self.room_code = response["roomCode"]
        self.player_id = response["playerId"]
        print(f"[Room] Created room {self.room_code}")
        return response

    async def join_room(self, code, name="Player 2"):
        response = await self.request("joinRoom", code=str(code), name=name)
        self.room_code = response["roomCode"]
        self.player_id = response["playerId"]
        print(f"[Room] Joined room {self.room_code}")
        return response

    def set_offer(self, signal):
        return self.fire("setOffer", signal=signal)

    def set_answer(self, signal):
        return self.fire("setAnswer", signal=signal)

    def add_ice_candidate(self, candidate):
        return self.fire("addIceCandidate", candidate=candidate)

    def set_ready(self):
        return self.fire("setReady")

    def switch_roles(self):
        return self.fire("switchRoles")

    def disconnect(self):
        self.room_code = None
        self.player_id = None
        return self.fire("disconnect")

    def delete_room(self):
        return self.fire("deleteRoom")

    # -- io -----------------------------------------------------------------

    async def _writer(self):
        try:
            while True:
                frame = await self._outbox.get()
                await self.websocket.send(frame)
        except websockets.ConnectionClosed:
            print("[Room] Signaling connection closed while sending")
        except asyncio.CancelledError:
            pass

    async def _reader(self):
        try:
            async for message in self.websocket:
                self.handle_frame(message)
        except websockets.ConnectionClosed as e:
            print(f"[Room] Signaling connection closed: {e}")
        except asyncio.CancelledError:
            pass
        finally:
            self._fail_pending(ConnectionError("Signaling connection closed"))

    def handle_frame(self, message):
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            print("[Room] Invalid JSON from signaling server")
            return
        kind = data.get("type")
        if kind == "room_update":
            if self.on_room_update is not None:
                try:
                    self.on_room_update(data.get("room"))
                except Exception as e:
                    print(f"[Room] Error handling room update: {e}")
            return

        future = self._pending.pop(data.get("id"), None)
        if kind == "error":
            error = room_error_from_code(data.get("code"), data.get("message"))
            if future is None:
                print(f"[Room] Request {data.get('id')} failed: {error.code} ({error.message})")
            elif not future.done():
                future.set_exception(error)
        elif kind == "response" and future is not None and not future.done():
            future.set_result(data)

    def _fail_pending(self, error):
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(error)
