# candymaze/tiles.py - tile grid, house facing rules and the runtime map overlay
from collections import namedtuple

ROAD = "road"
HOUSE = "house"
EXIT = "exit"
BLANK = "blank"

AVATAR_MARKER = "G"
SPAWN_MARKER = "S"
EXIT_MARKER = "!"

UP, DOWN, LEFT, RIGHT = "up", "down", "left", "right"
DIRECTIONS = (UP, DOWN, LEFT, RIGHT)

DIR_VECS = {
    UP: (0, -1),
    DOWN: (0, 1),
    LEFT: (-1, 0),
    RIGHT: (1, 0),
}

OPPOSITE = {UP: DOWN, DOWN: UP, LEFT: RIGHT, RIGHT: LEFT}

# Directions (house -> street) from which each house can be approached
HOUSE_FACING = {
    "Q": (UP, LEFT),      # north-west corner
    "W": (UP,),           # north side
    "E": (UP, RIGHT),     # north-east corner
    "D": (RIGHT,),        # east side
    "C": (DOWN, RIGHT),   # south-east corner
    "X": (DOWN,),         # south side
    "Z": (DOWN, LEFT),    # south-west corner
    "A": (LEFT,),         # west side
    "H": (UP,),           # standalone, north-facing
}

Tile = namedtuple("Tile", ["kind", "facing", "visited"])


def classify(char, road_tiles):
    """Classify a single map character."""
    if char == EXIT_MARKER:
        return Tile(EXIT, (), False)
    if char and (char in road_tiles or char in (SPAWN_MARKER, AVATAR_MARKER)):
        return Tile(ROAD, (), False)
    upper = char.upper() if char else char
    if upper in HOUSE_FACING:
        return Tile(HOUSE, HOUSE_FACING[upper], char != upper)
    return Tile(BLANK, (), False)


def is_unvisited_house(char):
    return bool(char) and char in HOUSE_FACING


def can_collect_from_house(house_char, house_to_player):
    return house_to_player in HOUSE_FACING.get(house_char, ())


def to_index(x, y, width):
    # row stride includes the newline separator, index 0 is the leading newline
    return 1 + y * (width + 1) + x


def from_index(index, width):
    i = index - 1
    return i % (width + 1), i // (width + 1)


class RuntimeMap:
    """A level template with the avatar and visited-house markers overlaid.

    Instances are never changed in place: ``with_avatar`` and
    ``with_visited`` return a new map. ``render()`` produces the marker
    string exchanged with the other participant.
    """

    def __init__(self, template, avatar_index=None, visited=()):
        self.template = template
        rows = template[1:].split("\n")
        self.width = len(rows[0])
        self.height = len(rows)
        self.avatar_index = avatar_index
        self.visited = frozenset(visited)

    @classmethod
    def from_template(cls, template):
        spawn = template.find(SPAWN_MARKER, 1)
        return cls(template, spawn if spawn > 0 else None)

    @classmethod
    def from_rendered(cls, template, text):
        """Rebuild the overlay from a rendered map received from a peer."""
        avatar = text.find(AVATAR_MARKER, 1)
        visited = set()
        for i, char in enumerate(text[:len(template)]):
            base = template[i]
            if base in HOUSE_FACING and char == base.lower():
                visited.add(i)
        return cls(template, avatar if avatar > 0 else None, visited)

    def in_bounds(self, x, y):
        return 0 <= x < self.width and 0 <= y < self.height

    def base_char(self, index):
        """Character under any avatar marker."""
        if index <= 0 or index >= len(self.template):
            return ""
        char = self.template[index]
        if index in self.visited:
            return char.lower()
        return char

    def char_at(self, index):
        if index == self.avatar_index:
            return AVATAR_MARKER
        return self.base_char(index)

    def char_at_xy(self, x, y):
        if not self.in_bounds(x, y):
            return ""
        return self.char_at(to_index(x, y, self.width))

    def avatar_position(self):
        if self.avatar_index is None:
            return None
        return from_index(self.avatar_index, self.width)

    def with_avatar(self, index):
        return RuntimeMap(self.template, index, self.visited)

    def with_visited(self, index):
        return RuntimeMap(self.template, self.avatar_index, self.visited | {index})

    def unvisited_houses(self):
        """Tile indices of every uppercase house, in map order."""
        return [
            i for i, char in enumerate(self.template)
            if char in HOUSE_FACING and i not in self.visited
        ]

    def has_unvisited_houses(self):
        return bool(self.unvisited_houses())

    def render(self):
        chars = list(self.template)
        for i in self.visited:
            chars[i] = chars[i].lower()
        if self.avatar_index is not None:
            chars[self.avatar_index] = AVATAR_MARKER
        return "".join(chars)

    def __eq__(self, other):
        if not isinstance(other, RuntimeMap):
            return NotImplemented
        return (self.template == other.template
                and self.avatar_index == other.avatar_index
                and self.visited == other.visited)

    def __repr__(self):
        return f"RuntimeMap(avatar={self.avatar_index}, visited={sorted(self.visited)})"


def adjacent_interactable_house(runtime_map, x, y, facing):
    """Return ``(house_char, house_index)`` for the house the avatar can
    trick-or-treat at from ``(x, y)``, or ``None``.

    The avatar must stand on a tile the house faces and must itself be
    facing the house.
    """
    for direction in DIRECTIONS:
        dx, dy = DIR_VECS[direction]
        nx, ny = x + dx, y + dy
        if not runtime_map.in_bounds(nx, ny):
            continue
        index = to_index(nx, ny, runtime_map.width)
        char = runtime_map.char_at(index)
        if not is_unvisited_house(char):
            continue
        faces_player = can_collect_from_house(char, OPPOSITE[direction])
        if faces_player and facing == direction:
            return char, index
    return None
