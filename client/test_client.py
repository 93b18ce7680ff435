# Tests for the client side: key handling, signaling client, peer channel and link
import asyncio
import json

import pygame
import pytest

from candymaze.errors import RoomFull
from candymaze.levels import load_levels
from candymaze.multiplayer import MultiplayerCoordinator
from candymaze.session import LEVEL_WIN, LOBBY, PLAY, GameSession
from client.link import MultiplayerLink
from client.main import CandyClient, parse_args
from client.peer import PeerChannel
from client.signaling import SignalingClient
from conftest import ManualScheduler


class FakeSocket:
    """Websocket double whose incoming frames are fed by the test"""

    def __init__(self, url=None):
        self.url = url
        self.sent = []
        self.inbox = asyncio.Queue()

    async def send(self, message):
        self.sent.append(json.loads(message))

    def __aiter__(self):
        return self

    async def __anext__(self):
        message = await self.inbox.get()
        if message is None:
            raise StopAsyncIteration
        return message

    async def close(self):
        self.inbox.put_nowait(None)


async def settle(condition, rounds=50):
    for _ in range(rounds):
        if condition():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


def new_session():
    return GameSession(load_levels(), ManualScheduler())


# -- keys ---------------------------------------------------------------------

def test_lobby_keys_pick_a_character():
    client = CandyClient(new_session())
    assert client.handle_key(pygame.K_UP) is None
    assert client.handle_key(pygame.K_g) == "select_character"
    assert client.session.character == "ghost"
    assert client.session.mode == PLAY


def test_play_keys_drive_the_session():
    client = CandyClient(new_session())
    client.handle_key(pygame.K_a)
    assert client.handle_key(pygame.K_LEFT) == "turn_left"
    assert client.session.facing == "down"
    assert client.handle_key(pygame.K_DOWN) == "short_forward"
    assert client.handle_key(pygame.K_w) == "move"
    assert client.session.moves >= 1


def test_next_level_only_after_a_win():
    client = CandyClient(new_session())
    client.handle_key(pygame.K_g)
    assert client.handle_key(pygame.K_n) is None
    client.session.set_mode(LEVEL_WIN)
    assert client.handle_key(pygame.K_n) == "next_level"
    assert client.session.current_level == 1


def test_escape_quits():
    client = CandyClient(new_session())
    assert client.handle_key(pygame.K_ESCAPE) == "quit"
    assert not client.running


def test_parse_args():
    args = parse_args(["--join", "12345", "--name", "Bo", "--server", "ws://example:9000"])
    assert args.join == "12345"
    assert not args.create
    assert args.server == "ws://example:9000"


# -- signaling client ---------------------------------------------------------

def connect_to(socket):
    async def connect(url):
        socket.url = url
        return socket
    return connect


def test_signaling_error_frame_raises_room_error():
    async def scenario():
        socket = FakeSocket()
        client = SignalingClient("ws://server", connect=connect_to(socket))
        await client.connect()
        task = asyncio.create_task(client.join_room("12345", "Bo"))
        await settle(lambda: socket.sent)
        request = socket.sent[0]
        assert request["op"] == "joinRoom" and request["code"] == "12345"
        socket.inbox.put_nowait(json.dumps({
            "type": "error", "id": request["id"], "code": "full", "message": "Room is full",
        }))
        with pytest.raises(RoomFull):
            await task
        await client.close()

    asyncio.run(scenario())


def test_signaling_create_room_and_pushes():
    async def scenario():
        socket = FakeSocket()
        client = SignalingClient("ws://server", connect=connect_to(socket))
        updates = []
        client.on_room_update = updates.append
        await client.connect()
        task = asyncio.create_task(client.create_room("Ann"))
        await settle(lambda: socket.sent)
        room = {"roomCode": "54321", "players": {}}
        socket.inbox.put_nowait(json.dumps({"type": "room_update", "room": room}))
        socket.inbox.put_nowait(json.dumps({
            "type": "response", "id": socket.sent[0]["id"], "ok": True,
            "roomCode": "54321", "playerId": "player1",
        }))
        response = await task
        assert response["roomCode"] == "54321"
        assert client.player_id == "player1"
        assert updates == [room]
        await client.close()

    asyncio.run(scenario())


def test_fire_and_forget_ops_keep_their_order():
    async def scenario():
        socket = FakeSocket()
        client = SignalingClient("ws://server", connect=connect_to(socket))
        await client.connect()
        client.set_offer({"type": "offer", "token": "t"})
        client.set_ready()
        client.delete_room()
        client.disconnect()
        await settle(lambda: len(socket.sent) == 4)
        assert [f["op"] for f in socket.sent] == ["setOffer", "setReady", "deleteRoom", "disconnect"]
        await client.close()

    asyncio.run(scenario())


def test_fire_without_connection_is_dropped():
    client = SignalingClient("ws://server")
    assert client.set_ready() is None


# -- peer channel -------------------------------------------------------------

def test_peer_channel_connects_through_relay():
    async def scenario():
        socket = FakeSocket()
        peer = PeerChannel("ws://server/", initiator=True, connect=connect_to(socket), token="abc")
        events = []
        peer.on_signal = lambda s: events.append(("signal", s["type"], s["token"]))
        peer.on_connect = lambda: events.append(("connect",))
        peer.on_data = lambda d: events.append(("data", d))
        peer.on_disconnect = lambda: events.append(("disconnect",))
        assert not peer.send("early")

        peer.start()
        socket.inbox.put_nowait(json.dumps({"type": "relay_ready"}))
        await settle(lambda: peer.connected)
        assert socket.url == "ws://server/relay?token=abc"
        assert peer.send(json.dumps({"type": "gameState", "data": {}}))
        await settle(lambda: len(socket.sent) == 2)
        assert socket.sent[0] == {"type": "ping"}

        socket.inbox.put_nowait('{"type": "gameState", "data": {"score": 1}}')
        socket.inbox.put_nowait(None)
        await peer._task
        assert events == [
            ("signal", "offer", "abc"),
            ("connect",),
            ("data", '{"type": "gameState", "data": {"score": 1}}'),
            ("disconnect",),
        ]
        assert not peer.connected

    asyncio.run(scenario())


def test_receiver_answers_an_offer():
    async def scenario():
        socket = FakeSocket()
        peer = PeerChannel("ws://server", initiator=False, connect=connect_to(socket))
        signals = []
        peer.on_signal = signals.append
        peer.start()
        assert signals == []
        peer.signal({"type": "offer", "token": "xyz"})
        assert signals == [{"type": "answer", "token": "xyz"}]
        await settle(lambda: socket.url is not None)
        assert socket.url.endswith("/relay?token=xyz")
        peer.destroy()
        assert peer.destroyed and not peer.send("x")

    asyncio.run(scenario())


# -- link ---------------------------------------------------------------------

class FakePeer:
    def __init__(self, initiator):
        self.initiator = initiator
        self.signals = []
        self.started = False
        self.on_signal = None

    def start(self):
        self.started = True
        if self.initiator:
            self.on_signal({"type": "offer", "token": "t1"})

    def signal(self, blob):
        self.signals.append(blob)
        if blob["type"] == "offer":
            self.on_signal({"type": "answer", "token": blob["token"]})

    def send(self, text):
        return True

    def destroy(self):
        pass


class RecordingSignaling:
    def __init__(self):
        self.calls = []
        self.on_room_update = None

    def set_offer(self, signal):
        self.calls.append(("set_offer", signal))

    def set_answer(self, signal):
        self.calls.append(("set_answer", signal))

    def set_ready(self):
        self.calls.append(("set_ready",))

    def disconnect(self):
        self.calls.append(("disconnect",))

    def delete_room(self):
        self.calls.append(("delete_room",))

    def switch_roles(self):
        self.calls.append(("switch_roles",))


def two_player_room(offer=None):
    return {
        "roomCode": "12345",
        "players": {
            "player1": {"id": "player1", "name": "Ann", "connected": True, "role": None, "rtcOffer": offer},
            "player2": {"id": "player2", "name": "Bo", "connected": True, "role": None, "rtcAnswer": None},
        },
        "gameState": {"status": "waiting"},
    }


def test_host_link_offers_once_guest_joins():
    coordinator = MultiplayerCoordinator(new_session())
    signaling = RecordingSignaling()
    link = MultiplayerLink(coordinator, signaling, FakePeer)
    assert signaling.on_room_update == link.on_room_update

    host_only = two_player_room()
    del host_only["players"]["player2"]
    link.join({"roomCode": "12345", "playerId": "player1", "room": host_only}, "Ann")
    assert coordinator.state.is_host
    assert link.peer is None

    link.on_room_update(two_player_room())
    assert link.peer.initiator and link.peer.started
    assert coordinator.transport is link.peer
    assert signaling.calls == [("set_offer", {"type": "offer", "token": "t1"}), ("set_ready",)]

    link.on_room_update(two_player_room())
    assert signaling.calls.count(("set_ready",)) == 1


def test_guest_link_answers_the_offer_once():
    coordinator = MultiplayerCoordinator(new_session())
    signaling = RecordingSignaling()
    link = MultiplayerLink(coordinator, signaling, FakePeer)
    offer = {"type": "offer", "token": "t1"}
    link.join({"roomCode": "12345", "playerId": "player2", "room": two_player_room(offer)}, "Bo")
    assert not link.peer.initiator
    assert link.peer.signals == [offer]
    assert ("set_answer", {"type": "answer", "token": "t1"}) in signaling.calls

    link.on_room_update(two_player_room(offer))
    assert link.peer.signals == [offer]
    assert coordinator.session.mode == LOBBY
