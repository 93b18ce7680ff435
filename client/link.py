# client/link.py - wires room updates, the peer channel and the coordinator together
from candymaze.multiplayer import GUEST_ID, HOST_ID


class MultiplayerLink:
    """Turns signaling room pushes into peer-channel setup.

    The host builds the initiating channel once a guest has joined and
    publishes its offer; the guest answers the offer it finds in the room.
    Both sides mark themselves ready so the server assigns roles.
    """

    def __init__(self, coordinator, signaling, peer_factory):
        self.coordinator = coordinator
        self.signaling = signaling
        self.peer_factory = peer_factory
        self.peer = None
        self._ready_sent = False
        self._signals_seen = set()
        signaling.on_room_update = self.on_room_update

    def join(self, response, player_name):
        """Adopt a createRoom/joinRoom response"""
        player_id = response["playerId"]
        self.coordinator.set_multiplayer_info(
            is_host=player_id == HOST_ID,
            player_id=player_id,
            room_code=response["roomCode"],
            player_name=player_name,
        )
        self.coordinator.signaling = self.signaling
        self.on_room_update(response.get("room"))

    def on_room_update(self, room):
        if not room:
            return
        if self.coordinator.apply_room_update(room):
            self.peer = None
            return
        state = self.coordinator.state
        if not state.is_multiplayer:
            return
        players = room.get("players") or {}
        host, guest = players.get(HOST_ID), players.get(GUEST_ID)
        if not (host and guest):
            return

        if state.is_host:
            if self.peer is None:
                self._create_peer(initiator=True)
            self._feed(guest.get("rtcAnswer"))
        else:
            offer = host.get("rtcOffer")
            if offer and self.peer is None:
                self._create_peer(initiator=False)
            self._feed(offer)

        if not self._ready_sent:
            self._ready_sent = True
            self.signaling.set_ready()

    def _feed(self, signal):
        if not signal or self.peer is None:
            return
        key = (signal.get("type"), signal.get("token"))
        if key in self._signals_seen:
            return
        self._signals_seen.add(key)
        self.peer.signal(signal)

    def _create_peer(self, initiator):
        peer = self.peer_factory(initiator)
        self.peer = peer
        self.coordinator.transport = peer
        peer.on_signal = self._on_signal
        peer.on_connect = self.coordinator.on_channel_connected
        peer.on_data = self.coordinator.handle_frame
        peer.on_disconnect = self.coordinator.on_channel_closed
        peer.on_error = lambda e: print(f"[Peer] {e}")
        self.coordinator.on_channel_connecting()
        peer.start()
        return peer

    def _on_signal(self, signal):
        if self.coordinator.state.is_host:
            self.signaling.set_offer(signal)
        else:
            self.signaling.set_answer(signal)
