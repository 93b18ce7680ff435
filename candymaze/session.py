# candymaze/session.py - authoritative game state for one client
import random

from .movement import Avatar, MovementEngine
from .path_graph import PathGraph
from .tiles import EXIT_MARKER, LEFT, RIGHT, RuntimeMap, adjacent_interactable_house
from .timers import AsyncioScheduler

LOBBY = "lobby"
PLAY = "play"
LEVEL_WIN = "levelWin"

SUCCESS = "success"
FAIL = "fail"

# fields sent to the guide after every movement action
MOVE_SYNC_FIELDS = ("map", "score", "facing", "candy_house_index", "active_player_character")
TURN_SYNC_FIELDS = ("facing", "last_direction", "map", "score", "candy_house_index",
                    "active_player_character")
INTERACTION_SYNC_FIELDS = ("map", "score", "candy_house_index", "active_player_character")


class Overlay:
    def __init__(self, active=False, type=None, message=None):
        self.active = active
        self.type = type
        self.message = message

    def __repr__(self):
        return f"Overlay(active={self.active}, type={self.type!r})"


class GameSession:
    """Owns the runtime map, routing graph, avatar and counters of one client.

    Input handlers (``move``, ``turn_left``, ``forward``, ``interact``...)
    mutate the session synchronously. When a multiplayer coordinator is
    attached, the session asks it to mirror the changed fields to the peer.
    """

    OVERLAY_SECONDS = 5.0
    WIN_DELAY_SECONDS = 0.2
    SUCCESS_MESSAGE = "Good Job! You got candy!"
    FAIL_MESSAGE = "Oh no! You got homework!"

    def __init__(self, levels, scheduler=None, rng=None):
        self.levels = levels
        self.scheduler = scheduler or AsyncioScheduler()
        self.rng = rng or random.Random()
        self.multiplayer = None
        self.engine = MovementEngine(self)

        self.current_level = None
        self.map = None
        self.graph = None
        self.avatar = Avatar()
        self.candy_house_index = None
        self.score = 0
        self.moves = 0
        self.mode = LOBBY
        self.mode_previous = LOBBY
        self.overlay = Overlay()
        self.last_interacted_house_index = None
        self.last_direction = None
        self.char_at_new_index = None
        self.character = None
        self.notice = None

        self._round = 0
        self._overlay_token = 0
        self._win_pending = False

    @property
    def facing(self):
        return self.avatar.facing

    @facing.setter
    def facing(self, value):
        self.avatar.facing = value

    # -- level lifecycle ----------------------------------------------------

    def start_level(self, level, candy_house_index=None, keep_score=False):
        self.current_level = level
        template = self.levels[level]
        self.map = RuntimeMap.from_template(template.template)
        if not keep_score:
            self.score = 0
        self.moves = 0
        self.avatar = Avatar(facing=LEFT)
        self.last_interacted_house_index = None
        self.last_direction = None
        self.char_at_new_index = None

        if candy_house_index is not None:
            self.candy_house_index = candy_house_index
            print(f"[Level] Candy house synced from other player: {candy_house_index}")
        else:
            self.pick_candy_house()

        self.graph = PathGraph(template.meta)
        self._sync_avatar_node()
        if self.avatar.node_index is None and not self.graph.is_empty():
            print(f"[Level] No node at spawn on level {level}, using grid movement")

        self._round += 1
        self._win_pending = False
        print(f"[Level] Level {level} started: {len(self.graph)} nodes, "
              f"{self.graph.edge_count} edges, score {self.score}")

    def _sync_avatar_node(self):
        pos = self.map.avatar_position() if self.map is not None else None
        if pos is None or self.graph is None:
            self.avatar.node_index = None
        else:
            self.avatar.node_index = self.graph.node_at(*pos)

    def pick_candy_house(self):
        houses = self.map.unvisited_houses() if self.map is not None else []
        self.candy_house_index = self.rng.choice(houses) if houses else None
        return self.candy_house_index

    def set_mode(self, mode):
        self.mode_previous = self.mode
        self.mode = mode

    def _multiplayer_active(self):
        return self.multiplayer is not None and self.multiplayer.state.is_multiplayer

    def select_character(self, character):
        self.character = character
        # a multiplayer round is started by the coordinator instead
        if not self._multiplayer_active():
            self.start_level(0)
            self.set_mode(PLAY)

    def next_level(self):
        self.start_level((self.current_level + 1) % len(self.levels))
        self.set_mode(PLAY)

    def test_custom_map(self, map_string, meta=None):
        index = self.levels.add_custom(map_string, meta)
        self.start_level(index)
        self.set_mode(PLAY)
        return index

    # -- input --------------------------------------------------------------

    def _can_act(self):
        if self._multiplayer_active() and not self.multiplayer.is_player():
            return False
        return self.map is not None and not self.overlay.active

    def move(self, direction):
        if not self._can_act():
            return False
        moved = self.engine.step(direction)
        self._broadcast(MOVE_SYNC_FIELDS)
        self.check_win()
        return moved

    def turn_left(self):
        return self._turn(LEFT)

    def turn_right(self):
        return self._turn(RIGHT)

    def _turn(self, side):
        if not self._can_act():
            return None
        facing = self.engine.turn(side)
        self._broadcast(TURN_SYNC_FIELDS)
        return facing

    def forward(self):
        if not self._can_act():
            return 0
        hops = self.engine.forward_until_stop()
        self._broadcast(MOVE_SYNC_FIELDS)
        self.check_win()
        return hops

    def short_forward(self):
        if not self._can_act():
            return 0
        hops = self.engine.short_forward_until_house()
        self._broadcast(MOVE_SYNC_FIELDS)
        self.check_win()
        return hops

    # -- houses -------------------------------------------------------------

    def interactable_house(self):
        if self.map is None:
            return None
        pos = self.map.avatar_position()
        if pos is None:
            return None
        return adjacent_interactable_house(self.map, pos[0], pos[1], self.facing)

    def can_interact(self):
        """Whether a trick-or-treat attempt would do anything right now."""
        if self.map is None or self.overlay.active:
            return False
        house = self.interactable_house()
        return house is not None and house[1] != self.last_interacted_house_index

    def interact(self):
        """Trick-or-treat at the house in front of the avatar.

        Returns ``"success"``, ``"fail"`` or None when nothing happened.
        """
        if not self._can_act():
            return None
        house = self.interactable_house()
        if house is None:
            return None
        house_char, house_index = house
        if house_index == self.last_interacted_house_index:
            return None
        self.last_interacted_house_index = house_index

        if house_index == self.candy_house_index:
            self.score += 1
            self.map = self.map.with_visited(house_index)
            self.show_overlay(SUCCESS, self.SUCCESS_MESSAGE)
            print(f"[House] Candy found at {house_index} ({house_char}), score {self.score}")
            self._send_interaction(True)
            self.close_overlay_later(self._after_candy_found)
            return SUCCESS

        self.score = max(0, self.score - 1)
        self.show_overlay(FAIL, self.FAIL_MESSAGE)
        print(f"[House] Wrong house at {house_index} ({house_char}), score {self.score}")
        self._send_interaction(False)
        self.close_overlay_later()
        return FAIL

    def _after_candy_found(self):
        if self._multiplayer_active():
            if self.multiplayer.is_player():
                self.multiplayer.switch_roles_and_continue()
        else:
            self.pick_candy_house()

    # -- overlay ------------------------------------------------------------

    def show_overlay(self, type, message):
        self._overlay_token += 1
        self.overlay = Overlay(True, type, message)

    def close_overlay(self):
        self._overlay_token += 1
        self.overlay = Overlay()

    def close_overlay_later(self, then=None):
        self.scheduler.call_later(self.OVERLAY_SECONDS, self._overlay_elapsed,
                                  self._overlay_token, then)

    def _overlay_elapsed(self, token, then):
        # the overlay was closed or replaced in the meantime
        if token != self._overlay_token:
            return
        self.close_overlay()
        if then is not None:
            then()

    def cancel_pending(self):
        """Turn every scheduled overlay and win callback into a no-op."""
        self._round += 1
        self._win_pending = False
        self._overlay_token += 1

    # -- win ----------------------------------------------------------------

    def check_win(self):
        if self.map is None or self._win_pending:
            return False
        won = not self.map.has_unvisited_houses() or self.char_at_new_index == EXIT_MARKER
        if won:
            self._win_pending = True
            print(f"[Level] Level {self.current_level} won: score {self.score}, moves {self.moves}")
            self.scheduler.call_later(self.WIN_DELAY_SECONDS, self._confirm_win, self._round)
        return won

    def _confirm_win(self, round_id):
        if round_id != self._round or self.mode != PLAY:
            return
        self.set_mode(LEVEL_WIN)
        if self._multiplayer_active():
            self.multiplayer.send_level_win()

    # -- sync ---------------------------------------------------------------

    def snapshot(self, fields):
        data = {}
        for field in fields:
            if field == "map":
                data["map"] = self.map.render() if self.map is not None else None
            elif field == "active_player_character":
                if self.multiplayer is not None:
                    data[field] = self.multiplayer.state.active_player_character
            else:
                data[field] = getattr(self, field)
        return data

    def apply_snapshot(self, snapshot):
        """Partial merge: only the fields present are overwritten."""
        for field, value in snapshot.items():
            if field == "map":
                self._apply_rendered_map(value)
            elif field == "active_player_character":
                if self.multiplayer is not None:
                    self.multiplayer.state.active_player_character = value
            else:
                setattr(self, field, value)

    def _apply_rendered_map(self, text):
        if text is None or self.current_level is None:
            return
        template = self.levels[self.current_level].template
        if len(text) != len(template):
            print(f"[Sync] Ignoring map for a different level (len {len(text)} != {len(template)})")
            return
        self.map = RuntimeMap.from_rendered(template, text)
        self._sync_avatar_node()

    def _broadcast(self, fields):
        if self._multiplayer_active():
            self.multiplayer.broadcast_state(self.snapshot(fields))

    def _send_interaction(self, success):
        if self._multiplayer_active():
            self.multiplayer.send_house_interaction(success, self.snapshot(INTERACTION_SYNC_FIELDS))
