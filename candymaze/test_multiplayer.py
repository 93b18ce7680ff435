# Tests for the two-player coordinator
from candymaze.levels import load_levels
from candymaze.multiplayer import GUIDE, PLAYER, MultiplayerCoordinator
from candymaze.protocol import (
    HouseInteraction, LevelStart, RoleSwitch, StateUpdate, decode_message, encode_message,
)
from candymaze.session import LEVEL_WIN, LOBBY, PLAY, SUCCESS, GameSession
from candymaze.tiles import UP
from conftest import ManualScheduler


class PickSecond:
    def choice(self, seq):
        return seq[min(1, len(seq) - 1)]


class RecordingTransport:
    def __init__(self):
        self.frames = []
        self.destroyed = False
        self.peer = None

    def send(self, text):
        self.frames.append(text)
        return True

    def destroy(self):
        self.destroyed = True

    def messages(self):
        return [decode_message(f) for f in self.frames]


class FakeSignaling:
    def __init__(self):
        self.calls = []

    def disconnect(self):
        self.calls.append("disconnect")

    def delete_room(self):
        self.calls.append("delete_room")

    def switch_roles(self):
        self.calls.append("switch_roles")


def make_client(scheduler, role, player_id="player1", transport=None, signaling=None):
    session = GameSession(load_levels(), scheduler, PickSecond())
    coordinator = MultiplayerCoordinator(session, transport or RecordingTransport(), signaling)
    coordinator.set_multiplayer_info(
        is_host=player_id == "player1", player_id=player_id, room_code="12345",
        player_name=player_id, active_player_character="ghost",
    )
    coordinator.set_role(role)
    return session, coordinator


def pump(*coordinators):
    """Deliver queued frames between linked coordinators until quiet"""
    delivered = True
    while delivered:
        delivered = False
        for c in coordinators:
            outbox, c.transport.frames = c.transport.frames, []
            for frame in outbox:
                c.transport.peer.handle_frame(frame)
                delivered = True


def linked_pair():
    scheduler = ManualScheduler()
    a_session, a = make_client(scheduler, PLAYER, "player1")
    b_session, b = make_client(scheduler, GUIDE, "player2")
    a.transport.peer, b.transport.peer = b, a
    a.on_channel_connected()
    b.on_channel_connected()
    pump(a, b)
    return scheduler, (a_session, a), (b_session, b)


def room(guest_connected=True):
    return {
        "roomCode": "12345",
        "players": {
            "player1": {"id": "player1", "name": "Ann", "connected": True, "role": "player"},
            "player2": {"id": "player2", "name": "Bo", "connected": guest_connected, "role": "guide"},
        },
    }


def test_player_starts_the_round_and_guide_follows():
    _, (a_session, a), (b_session, b) = linked_pair()
    assert a_session.mode == PLAY and b_session.mode == PLAY
    assert a_session.current_level == b_session.current_level == 0
    assert b_session.candy_house_index == a_session.candy_house_index == 4
    assert b_session.map == a_session.map


def test_guide_cannot_move():
    _, _, (b_session, b) = linked_pair()
    assert not b_session.move(UP)
    assert b_session.interact() is None
    assert b.transport.frames == []


def test_moves_are_mirrored_to_the_guide():
    _, (a_session, a), (b_session, b) = linked_pair()
    a_session.move(UP)
    pump(a, b)
    assert b_session.map == a_session.map
    assert b_session.facing == UP
    assert b_session.avatar.node_index == a_session.avatar.node_index


def test_merging_the_same_update_twice_is_idempotent():
    _, (a_session, a), (b_session, b) = linked_pair()
    a_session.move(UP)
    frame = a.transport.frames[-1]
    b.handle_frame(frame)
    first = (b_session.map, b_session.score, b_session.facing, b_session.candy_house_index)
    b.handle_frame(frame)
    assert (b_session.map, b_session.score, b_session.facing, b_session.candy_house_index) == first


def test_full_round_hands_the_player_role_over():
    scheduler, (a_session, a), (b_session, b) = linked_pair()
    a_session.move(UP)
    assert a_session.interact() == SUCCESS
    pump(a, b)
    assert b_session.overlay.active and b_session.overlay.type == SUCCESS
    assert b_session.score == 1
    assert b_session.map.render()[4] == "x"

    scheduler.advance(5.0)
    pump(a, b)
    assert a.state.role == GUIDE
    assert b.state.role == PLAYER
    assert not b_session.overlay.active
    assert a_session.current_level == b_session.current_level == 1
    assert a_session.candy_house_index == b_session.candy_house_index == 6
    assert a_session.map == b_session.map
    assert a_session.score == b_session.score == 1
    assert a.state.active_player_character == b.state.active_player_character == "alien"


def test_guide_takes_over_on_role_switch():
    session, coordinator = make_client(ManualScheduler(), GUIDE, "player2")
    coordinator.on_channel_connected()
    session.show_overlay(SUCCESS, session.SUCCESS_MESSAGE)

    coordinator.handle_frame(encode_message(RoleSwitch(2, "alien", 7)))

    assert session.score == 7
    assert not session.overlay.active
    assert coordinator.state.role == PLAYER
    assert coordinator.state.active_player_character == "alien"
    assert session.current_level == 2
    assert session.mode == PLAY
    sent = coordinator.transport.messages()[-1]
    assert isinstance(sent, LevelStart)
    assert sent.level == 2
    assert sent.snapshot["candy_house_index"] == session.candy_house_index == 4
    assert sent.snapshot["score"] == 7


def test_room_update_after_grace_period_tears_down():
    scheduler = ManualScheduler()
    signaling = FakeSignaling()
    session, coordinator = make_client(scheduler, PLAYER, "player1", signaling=signaling)
    coordinator.on_channel_connected()
    assert not coordinator.apply_room_update(room(True))

    scheduler.advance(2.0)
    assert not coordinator.apply_room_update(room(False))
    assert session.mode == PLAY

    scheduler.advance(1.5)
    assert coordinator.apply_room_update(room(False))
    assert session.mode == LOBBY
    assert session.notice == coordinator.DISCONNECT_NOTICE
    assert coordinator.transport.destroyed
    assert signaling.calls == ["delete_room", "disconnect"]
    assert not coordinator.state.is_multiplayer


def test_guest_leaving_the_room_record_counts_as_disconnect():
    scheduler = ManualScheduler()
    session, coordinator = make_client(scheduler, PLAYER, "player1", signaling=FakeSignaling())
    coordinator.on_channel_connected()
    coordinator.apply_room_update(room(True))
    scheduler.advance(4.0)
    gone = room(True)
    del gone["players"]["player2"]
    assert coordinator.apply_room_update(gone)
    assert session.mode == LOBBY


def test_room_update_assigns_roles_and_starts_round():
    session = GameSession(load_levels(), ManualScheduler(), PickSecond())
    coordinator = MultiplayerCoordinator(session, RecordingTransport())
    coordinator.set_multiplayer_info(is_host=True, player_id="player1")
    coordinator.on_channel_connected()
    assert session.mode == LOBBY

    update = room(True)
    update["players"]["player1"]["character"] = "alien"
    coordinator.apply_room_update(update)
    assert coordinator.state.role == PLAYER
    assert coordinator.state.active_player_character == "alien"
    assert coordinator.state.other_player_name == "Bo"
    assert session.mode == PLAY
    assert coordinator.transport.messages()[0].level == 0


def test_channel_close_inside_grace_keeps_playing():
    scheduler = ManualScheduler()
    session, coordinator = make_client(scheduler, PLAYER)
    coordinator.on_channel_connected()
    scheduler.advance(1.0)
    coordinator.on_channel_closed()
    assert session.mode == PLAY
    assert not coordinator.state.webrtc_connected


def test_channel_close_after_grace_tears_down():
    scheduler = ManualScheduler()
    session, coordinator = make_client(scheduler, PLAYER, signaling=FakeSignaling())
    coordinator.on_channel_connected()
    scheduler.advance(5.0)
    coordinator.on_channel_closed()
    assert session.mode == LOBBY
    assert coordinator.state.role is None


def test_channel_close_inside_grace_tears_down_once_grace_ends(scheduler):
    session, coordinator = make_client(scheduler, PLAYER, signaling=FakeSignaling())
    coordinator.on_channel_connected()
    scheduler.advance(1.0)
    coordinator.on_channel_closed()
    scheduler.advance(1.9)
    assert session.mode == PLAY
    scheduler.advance(0.2)
    assert session.mode == LOBBY
    assert session.notice == coordinator.DISCONNECT_NOTICE
    assert coordinator.signaling.calls == ["delete_room", "disconnect"]


def test_reconnect_inside_grace_keeps_playing(scheduler):
    session, coordinator = make_client(scheduler, PLAYER, signaling=FakeSignaling())
    coordinator.on_channel_connected()
    scheduler.advance(1.0)
    coordinator.on_channel_closed()
    scheduler.advance(0.5)
    coordinator.on_channel_connected()
    scheduler.advance(5.0)
    assert session.mode == PLAY
    assert coordinator.signaling.calls == []


def test_pending_win_does_not_replace_the_disconnect_screen(scheduler):
    session, coordinator = make_client(scheduler, PLAYER, signaling=FakeSignaling())
    coordinator.on_channel_connected()
    coordinator.apply_room_update(room(True))
    scheduler.advance(4.0)
    session.char_at_new_index = "!"
    assert session.check_win()
    assert coordinator.apply_room_update(room(False))
    assert session.mode == LOBBY
    scheduler.advance(0.3)
    assert session.mode == LOBBY
    assert session.notice == coordinator.DISCONNECT_NOTICE


def test_player_ignores_house_interaction_messages():
    session, coordinator = make_client(ManualScheduler(), PLAYER)
    coordinator.on_channel_connected()
    coordinator.handle_frame(encode_message(HouseInteraction(False, score=0)))
    assert not session.overlay.active


def test_guide_fail_overlay_clears_itself():
    scheduler = ManualScheduler()
    session, coordinator = make_client(scheduler, GUIDE, "player2")
    coordinator.on_channel_connected()
    coordinator.handle_frame(encode_message(HouseInteraction(False, score=0)))
    assert session.overlay.active
    scheduler.advance(5.0)
    assert not session.overlay.active


def test_level_win_message_sets_mode():
    _, (a_session, a), (b_session, b) = linked_pair()
    a_session.char_at_new_index = "!"
    a_session.check_win()
    scheduler = a_session.scheduler
    scheduler.advance(0.2)
    pump(a, b)
    assert a_session.mode == LEVEL_WIN
    assert b_session.mode == LEVEL_WIN


def test_send_never_raises():
    class Broken(RecordingTransport):
        def send(self, text):
            raise RuntimeError("channel gone")

    session, coordinator = make_client(ManualScheduler(), PLAYER, transport=Broken())
    coordinator.on_channel_connected()
    assert not coordinator.send(StateUpdate(score=1))


def test_nothing_is_sent_before_the_channel_is_up():
    session, coordinator = make_client(ManualScheduler(), PLAYER)
    assert not coordinator.broadcast_state({"score": 1})
    assert coordinator.transport.frames == []


def test_malformed_frames_are_dropped():
    session, coordinator = make_client(ManualScheduler(), GUIDE, "player2")
    assert coordinator.handle_frame("{broken") is None
    assert coordinator.handle_frame('{"type": "ping"}') is None
    assert session.mode == LOBBY
