# client/peer.py - two-party game channel relayed through the signaling server
import asyncio
import json
import secrets

import websockets

from candymaze.protocol import PING_TYPE

OFFER = "offer"
ANSWER = "answer"


class PeerChannel:
    """Initiator/receiver pair exchanging text frames.

    The initiator emits an ``offer`` signal carrying a relay token; the
    receiver answers it and both attach to ``<url>/relay?token=...``. Once
    the relay reports both ends present the channel is connected.
    """

    def __init__(self, url, initiator, connect=None, token=None):
        self.url = url.rstrip("/")
        self.initiator = initiator
        self._connect = connect or websockets.connect
        self.token = token
        self.connected = False
        self.destroyed = False
        self.websocket = None
        self._task = None
        self._outbox = asyncio.Queue()
        self._writer_task = None

        self.on_signal = None
        self.on_connect = None
        self.on_data = None
        self.on_disconnect = None
        self.on_error = None

    def relay_url(self):
        return f"{self.url}/relay?token={self.token}"

    def start(self):
        if self.initiator:
            self.token = self.token or secrets.token_hex(8)
            self._emit(self.on_signal, {"type": OFFER, "token": self.token})
            self._open()

    def signal(self, blob):
        """Feed a signal produced by the other side"""
        if self.destroyed or not isinstance(blob, dict):
            return
        kind = blob.get("type")
        if kind == OFFER and not self.initiator:
            if self._task is not None:
                return
            self.token = blob.get("token")
            self._emit(self.on_signal, {"type": ANSWER, "token": self.token})
            self._open()
        elif kind == ANSWER and self.initiator:
            if blob.get("token") != self.token:
                print(f"[Peer] Ignoring answer for another token: {blob.get('token')}")
        else:
            print(f"[Peer] Ignoring signal {kind!r}")

    def _open(self):
        self._task = asyncio.create_task(self._run())

    async def _run(self):
        try:
            self.websocket = await self._connect(self.relay_url())
            async for message in self.websocket:
                if self.destroyed:
                    break
                if not self.connected:
                    if _frame_type(message) == "relay_ready":
                        self._on_ready()
                    continue
                self._emit(self.on_data, message)
        except websockets.ConnectionClosed:
            pass
        except asyncio.CancelledError:
            raise
        except Exception as e:
            print(f"[Peer] Channel error: {e}")
            self._emit(self.on_error, e)
        finally:
            was_connected = self.connected
            self.connected = False
            if self._writer_task is not None:
                self._writer_task.cancel()
            if was_connected and not self.destroyed:
                print("[Peer] Channel closed")
                self._emit(self.on_disconnect)

    def _on_ready(self):
        self.connected = True
        self._writer_task = asyncio.create_task(self._writer())
        print("[Peer] Channel established")
        self.send(json.dumps({"type": PING_TYPE}))
        self._emit(self.on_connect)

    async def _writer(self):
        try:
            while True:
                frame = await self._outbox.get()
                await self.websocket.send(frame)
        except websockets.ConnectionClosed:
            print("[Peer] Channel closed while sending")

    def send(self, text):
        """Queue a frame; returns False when the channel is not usable"""
        if not self.connected or self.destroyed:
            return False
        self._outbox.put_nowait(text)
        return True

    def destroy(self):
        if self.destroyed:
            return
        self.destroyed = True
        self.connected = False
        for task in (self._writer_task, self._task):
            if task is not None:
                task.cancel()
        if self.websocket is not None:
            asyncio.create_task(self.websocket.close())
        print("[Peer] Channel destroyed")

    @staticmethod
    def _emit(callback, *args):
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            print(f"[Peer] Error in callback {getattr(callback, '__name__', callback)}: {e}")


def _frame_type(message):
    try:
        data = json.loads(message)
    except (TypeError, ValueError):
        return None
    return data.get("type") if isinstance(data, dict) else None
