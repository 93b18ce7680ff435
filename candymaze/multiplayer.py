# candymaze/multiplayer.py - role hand-off and state mirroring between two clients
from .errors import ProtocolError
from .protocol import (
    HouseInteraction, InitialSync, LevelStart, LevelWin, RoleSwitch, StateUpdate,
    decode_message, encode_message,
)
from .session import FAIL, LEVEL_WIN, LOBBY, PLAY, SUCCESS

PLAYER = "player"
GUIDE = "guide"

GHOST = "ghost"
ALIEN = "alien"

HOST_ID = "player1"
GUEST_ID = "player2"

DISCONNECTED = "disconnected"
CONNECTING = "connecting"
CONNECTED = "connected"

INITIAL_SYNC_FIELDS = ("candy_house_index", "map", "score", "facing", "active_player_character")
LEVEL_START_FIELDS = INITIAL_SYNC_FIELDS


class MultiplayerState:
    """Per-client view of the two-player session."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.is_multiplayer = False
        self.is_host = False
        self.player_id = None
        self.room_code = None
        self.player_name = None
        self.role = None
        self.other_player_name = None
        self.other_player_role = None
        self.other_player_connected = False
        self.webrtc_connected = False
        self.webrtc_connected_at = None
        self.room_data = None
        self.active_player_character = None


class MultiplayerCoordinator:
    """Keeps a GameSession in step with the other participant.

    The transport only needs ``send(text)`` and ``destroy()``; the signaling
    client only needs ``disconnect()``, ``delete_room()`` and
    ``switch_roles()``. All are fire-and-forget from here.
    """

    DISCONNECT_GRACE_MS = 3000
    DISCONNECT_NOTICE = "Connection to the other player was lost."

    def __init__(self, session, transport=None, signaling=None, clock=None):
        self.session = session
        self.transport = transport
        self.signaling = signaling
        self.clock = clock or session.scheduler.now_ms
        self.state = MultiplayerState()
        self.channel_state = DISCONNECTED
        self._round_started = False
        self._close_token = 0
        session.multiplayer = self

    # -- setup --------------------------------------------------------------

    def set_multiplayer_info(self, is_host, player_id, room_code=None, player_name=None,
                             active_player_character=None):
        self.state.is_multiplayer = True
        self.state.is_host = is_host
        self.state.player_id = player_id
        self.state.room_code = room_code
        self.state.player_name = player_name
        if active_player_character is not None:
            self.state.active_player_character = active_player_character

    def set_role(self, role):
        self.state.role = role

    def is_player(self):
        return self.state.role == PLAYER

    def is_guide(self):
        return self.state.role == GUIDE

    @property
    def other_player_id(self):
        return GUEST_ID if self.state.player_id == HOST_ID else HOST_ID

    # -- channel lifecycle --------------------------------------------------

    def on_channel_connecting(self):
        self.channel_state = CONNECTING

    def on_channel_connected(self):
        self.channel_state = CONNECTED
        self.state.webrtc_connected = True
        self.state.webrtc_connected_at = self.clock()
        self._close_token += 1
        print("[Sync] Peer channel connected")
        self.maybe_start_round()

    def on_channel_closed(self):
        past_grace = self._past_grace()
        remaining_ms = self._grace_remaining_ms()
        was_playing = (self.state.is_multiplayer and self.state.webrtc_connected
                       and self.session.mode == PLAY)
        self.channel_state = DISCONNECTED
        self.state.webrtc_connected = False
        self.state.webrtc_connected_at = None
        print("[Sync] Peer channel closed")
        if not was_playing:
            return
        if past_grace:
            self.teardown(self.DISCONNECT_NOTICE)
        else:
            # closed early; decide again once the grace period is over
            self._close_token += 1
            self.session.scheduler.call_later(remaining_ms / 1000.0, self._closed_after_grace,
                                              self._close_token)

    def _closed_after_grace(self, token):
        if token != self._close_token or self.state.webrtc_connected:
            return
        if self.state.is_multiplayer and self.session.mode == PLAY:
            self.teardown(self.DISCONNECT_NOTICE)

    def _grace_remaining_ms(self):
        connected_at = self.state.webrtc_connected_at
        if connected_at is None:
            return 0
        return max(0, self.DISCONNECT_GRACE_MS - (self.clock() - connected_at))

    def _past_grace(self):
        connected_at = self.state.webrtc_connected_at
        if connected_at is None:
            return True
        return self.clock() - connected_at > self.DISCONNECT_GRACE_MS

    # -- outgoing -----------------------------------------------------------

    def send(self, message):
        """Send one message to the peer; never raises."""
        if not (self.state.is_multiplayer and self.state.webrtc_connected and self.transport):
            return False
        try:
            result = self.transport.send(encode_message(message))
        except Exception as e:
            print(f"[Sync] Error sending {type(message).__name__}: {e}")
            return False
        if result is False:
            print(f"[Sync] Cannot send {type(message).__name__}: channel not ready")
            return False
        return True

    def broadcast_state(self, snapshot):
        return self.send(StateUpdate(**snapshot))

    def send_house_interaction(self, success, snapshot):
        return self.send(HouseInteraction(success, **snapshot))

    def send_level_win(self):
        return self.send(LevelWin(**self.session.snapshot(INITIAL_SYNC_FIELDS)))

    def send_initial_sync(self):
        s = self.session
        return self.send(InitialSync(s.current_level, **s.snapshot(INITIAL_SYNC_FIELDS)))

    def maybe_start_round(self):
        """Start the first round once roles are known and the channel is up.

        The participant holding the player role picks the level and candy
        house; the guide waits for ``initialSync``.
        """
        if self._round_started or not self.state.webrtc_connected or self.state.role is None:
            return False
        self._round_started = True
        if self.is_player():
            self.session.start_level(0)
            self.session.set_mode(PLAY)
            self.send_initial_sync()
            print("[Sync] Sent initial sync to guide")
        return True

    # -- incoming -----------------------------------------------------------

    def handle_frame(self, text):
        try:
            message = decode_message(text)
        except ProtocolError as e:
            print(f"[Sync] Dropping frame: {e}")
            return None
        if message is not None:
            self.handle_message(message)
        return message

    def handle_message(self, message):
        s = self.session
        if isinstance(message, InitialSync):
            s.start_level(message.level, message.snapshot.get("candy_house_index"))
            s.apply_snapshot(message.snapshot)
            s.set_mode(PLAY)
            self._round_started = True
        elif isinstance(message, RoleSwitch):
            s.close_overlay()
            if message.score is not None:
                s.score = message.score
            self.switch_roles_and_continue(message.level, message.active_player_character)
        elif isinstance(message, LevelStart):
            level = message.level if message.level is not None else s.current_level
            if "score" in message.snapshot:
                s.score = message.snapshot["score"]
            s.start_level(level, message.snapshot.get("candy_house_index"), keep_score=True)
            s.apply_snapshot(message.snapshot)
        elif isinstance(message, HouseInteraction):
            # the player already applied its own interaction
            if not self.is_guide():
                print("[Sync] Ignoring houseInteraction outside the guide role")
                return
            s.apply_snapshot(message.snapshot)
            if message.success:
                # cleared by the roleSwitch that follows
                s.show_overlay(SUCCESS, s.SUCCESS_MESSAGE)
            else:
                s.show_overlay(FAIL, s.FAIL_MESSAGE)
                s.close_overlay_later()
        elif isinstance(message, LevelWin):
            s.apply_snapshot(message.snapshot)
            s.set_mode(LEVEL_WIN)
        else:
            s.apply_snapshot(message.snapshot)

    # -- role switch --------------------------------------------------------

    def switch_roles_and_continue(self, level=None, active_player_character=None):
        s = self.session
        current = self.state.role
        if active_player_character is None:
            active_player_character = ALIEN if self.state.active_player_character == GHOST else GHOST
        if level is None:
            level = ((s.current_level or 0) + 1) % len(s.levels)

        if current == PLAYER:
            # the next candy house is chosen by whoever becomes the player
            self.send(RoleSwitch(level, active_player_character, s.score))
            if self.signaling is not None:
                # keeps the room record's roles and round counter current
                self.signaling.switch_roles()
            self.state.role = GUIDE
            self.state.active_player_character = active_player_character
            print(f"[Sync] Now guide, score {s.score}")
        else:
            self.state.role = PLAYER
            self.state.active_player_character = active_player_character
            s.start_level(level, keep_score=True)
            self.send(LevelStart(level, **s.snapshot(LEVEL_START_FIELDS)))
            print(f"[Sync] Now player on level {level}, candy at {s.candy_house_index}")
        s.set_mode(PLAY)

    # -- room updates and disconnects --------------------------------------

    def apply_room_update(self, room):
        """Digest a room record pushed by the signaling server."""
        st = self.state
        st.room_data = room
        players = (room or {}).get("players") or {}
        mine = players.get(st.player_id) or {}
        other = players.get(self.other_player_id)
        if other:
            st.other_player_name = other.get("name")
            st.other_player_role = other.get("role")

        if st.role is None and mine.get("role"):
            self.set_role(mine["role"])
            for entry in players.values():
                if entry and entry.get("role") == PLAYER and st.active_player_character is None:
                    st.active_player_character = entry.get("character")
            self.maybe_start_round()

        if not (st.is_multiplayer and self.session.mode == PLAY and st.webrtc_connected and players):
            return False

        if not st.other_player_connected and other and other.get("connected"):
            st.other_player_connected = True

        if self._past_grace() and st.other_player_connected:
            if not other or not other.get("connected"):
                self.teardown(self.DISCONNECT_NOTICE)
                return True
        return False

    def teardown(self, notice=None):
        print(f"[Sync] Tearing down multiplayer session: {notice}")
        if self.transport is not None:
            self.transport.destroy()
        if self.signaling is not None:
            if self.state.is_host:
                self.signaling.delete_room()
            self.signaling.disconnect()
        self.state.reset()
        self.channel_state = DISCONNECTED
        self._round_started = False
        self._close_token += 1
        self.session.cancel_pending()
        self.session.close_overlay()
        self.session.set_mode(LOBBY)
        self.session.notice = notice
