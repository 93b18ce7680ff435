# candymaze/movement.py - single-step, turn and run-until-stop movement
from .path_graph import HOUSE_TYPES, JUNCTION, STOP_TYPES
from .tiles import (
    DIR_VECS, DOWN, EXIT, HOUSE, LEFT, OPPOSITE, RIGHT, ROAD, UP,
    can_collect_from_house, classify, to_index,
)

TURN_LEFT = {LEFT: DOWN, DOWN: RIGHT, RIGHT: UP, UP: LEFT}
TURN_RIGHT = {LEFT: UP, UP: RIGHT, RIGHT: DOWN, DOWN: LEFT}

PERPENDICULAR = {
    UP: (LEFT, RIGHT),
    DOWN: (LEFT, RIGHT),
    LEFT: (UP, DOWN),
    RIGHT: (UP, DOWN),
}


class Avatar:
    """Where the avatar is on the routing graph and which way it looks."""

    def __init__(self, node_index=None, facing=LEFT):
        self.node_index = node_index
        self.facing = facing

    def __repr__(self):
        return f"Avatar(node={self.node_index}, facing={self.facing})"


class MovementEngine:
    """Executes movement against a GameSession's map, graph and counters.

    Every call runs to completion; nothing here keeps a "moving" state.
    When the avatar is not on a graph node the engine falls back to
    stepping over the character grid.
    """

    def __init__(self, session):
        self.session = session

    # -- helpers -----------------------------------------------------------

    def on_graph(self):
        s = self.session
        index = s.avatar.node_index
        return index is not None and s.graph is not None and 0 <= index < len(s.graph)

    def _hop(self, node_index):
        """Move the avatar marker onto a graph node."""
        s = self.session
        node = s.graph.nodes[node_index]
        new_index = to_index(node["x"], node["y"], s.map.width)
        s.map = s.map.with_avatar(new_index)
        s.avatar.node_index = node_index
        s.char_at_new_index = s.map.base_char(new_index)
        s.last_interacted_house_index = None

    # -- primitives ---------------------------------------------------------

    def step(self, direction):
        """Move one node (or one tile without a graph) in ``direction``."""
        s = self.session
        if not self.on_graph():
            return self._grid_step(direction)

        next_index = s.graph.forward_neighbor(s.avatar.node_index, direction)
        if next_index is None:
            # bump: the attempt still counts
            s.moves += 1
            return False
        self._hop(next_index)
        s.last_direction = direction
        s.avatar.facing = direction
        return True

    def turn(self, side):
        s = self.session
        table = TURN_LEFT if side == LEFT else TURN_RIGHT
        s.avatar.facing = table[s.avatar.facing]
        s.last_direction = s.avatar.facing
        s.moves += 1
        s.last_interacted_house_index = None
        return s.avatar.facing

    def forward_until_stop(self):
        """Run straight ahead until a junction, a side branch or a dead end."""
        s = self.session
        facing = s.avatar.facing
        hops = 0
        if self.on_graph():
            cur = s.avatar.node_index
            while True:
                nxt = s.graph.forward_neighbor(cur, facing)
                if nxt is None:
                    break
                self._hop(nxt)
                s.moves += 1
                hops += 1
                cur = nxt
                if s.graph.nodes[cur]["type"] in STOP_TYPES:
                    break
                if s.graph.has_perpendicular_branch(cur, facing):
                    break
        else:
            while self._grid_can_move(facing):
                self._grid_step(facing)
                hops += 1
                if self._grid_is_junction(facing):
                    break
        if hops:
            s.last_direction = facing
        else:
            s.moves += 1
        return hops

    def short_forward_until_house(self):
        """Walk to the next house stop before the first junction, preferring
        the stop next to the candy house."""
        s = self.session
        facing = s.avatar.facing
        if not self.on_graph():
            return self._grid_short_forward(facing)

        target = self._short_forward_target(facing)
        if target is None:
            return 0

        hops = 0
        cur = s.avatar.node_index
        while cur != target:
            nxt = s.graph.forward_neighbor(cur, facing)
            if nxt is None:
                break
            self._hop(nxt)
            s.moves += 1
            hops += 1
            cur = nxt
        if hops:
            s.last_direction = facing
        return hops

    def _short_forward_target(self, facing):
        s = self.session
        graph, width = s.graph, s.map.width
        candy = s.candy_house_index
        first_house = None
        scan = s.avatar.node_index
        while True:
            nxt = graph.forward_neighbor(scan, facing)
            if nxt is None:
                break
            node = graph.nodes[nxt]
            if node["type"] == JUNCTION:
                break
            if node["type"] in HOUSE_TYPES:
                if first_house is None:
                    first_house = nxt
                if candy is not None and self._touches_tile(node["x"], node["y"], candy):
                    return nxt
            scan = nxt
        return first_house

    def _touches_tile(self, x, y, tile_index):
        m = self.session.map
        for dx, dy in DIR_VECS.values():
            nx, ny = x + dx, y + dy
            if m.in_bounds(nx, ny) and to_index(nx, ny, m.width) == tile_index:
                return True
        return False

    # -- character-grid fallback -------------------------------------------

    def _grid_next(self, direction):
        m = self.session.map
        x, y = m.avatar_position()
        dx, dy = DIR_VECS[direction]
        nx = min(max(x + dx, 0), m.width - 1)
        ny = min(max(y + dy, 0), m.height - 1)
        return (x, y), (nx, ny)

    def _grid_can_move(self, direction):
        s = self.session
        if s.map.avatar_position() is None:
            return False
        cur, nxt = self._grid_next(direction)
        if nxt == cur:
            return False
        char = s.map.char_at_xy(*nxt)
        return classify(char, s.levels.road_tiles).kind in (ROAD, EXIT)

    def _grid_is_junction(self, direction):
        return any(self._grid_can_move(d) for d in PERPENDICULAR[direction])

    def _grid_step(self, direction):
        s = self.session
        if s.map.avatar_position() is None:
            return False
        cur, nxt = self._grid_next(direction)
        new_index = to_index(nxt[0], nxt[1], s.map.width)
        char = s.map.char_at(new_index)
        tile = classify(char, s.levels.road_tiles)
        s.char_at_new_index = char
        s.last_direction = direction
        s.avatar.facing = direction

        moved = scored = False
        if nxt != cur:
            if tile.kind in (ROAD, EXIT):
                s.map = s.map.with_avatar(new_index)
                s.last_interacted_house_index = None
                moved = True
            elif (tile.kind == HOUSE and not tile.visited
                  and can_collect_from_house(char, OPPOSITE[direction])):
                s.score += 1
                s.map = s.map.with_visited(new_index)
                scored = True
                if s.candy_house_index == new_index:
                    s.pick_candy_house()
        if moved or scored:
            s.moves += 1
        return moved

    def _grid_house_beside(self, direction):
        m = self.session.map
        x, y = m.avatar_position()
        for side in PERPENDICULAR[direction]:
            dx, dy = DIR_VECS[side]
            tile = classify(m.char_at_xy(x + dx, y + dy), self.session.levels.road_tiles)
            if tile.kind == HOUSE:
                return True
        return False

    def _grid_short_forward(self, facing):
        hops = 0
        while self._grid_can_move(facing):
            self._grid_step(facing)
            hops += 1
            if self._grid_house_beside(facing):
                break
        return hops
