# candymaze/levels.py - level resource parsing
import json
import os

from .errors import LevelFormatError

META_MARKER = "---META---"

DEFAULT_LEVELS_PATH = os.path.join(os.path.dirname(__file__), "levels.txt")


def empty_meta():
    return {"nodes": [], "edges": []}


def _normalize_meta(meta):
    if not isinstance(meta, dict):
        return empty_meta()
    nodes = meta.get("nodes")
    edges = meta.get("edges")
    return {
        "nodes": nodes if isinstance(nodes, list) else [],
        "edges": edges if isinstance(edges, list) else [],
    }


class Level:
    """An immutable map template plus its routing metadata."""

    def __init__(self, template, meta=None):
        if not template.startswith("\n") or not template[1:]:
            raise LevelFormatError("level template must be a leading newline followed by rows")
        rows = template[1:].split("\n")
        widths = {len(row) for row in rows}
        if len(widths) != 1:
            raise LevelFormatError(
                f"level rows must all have the same width, got {sorted(widths)}")
        self.template = template
        self.width = len(rows[0])
        self.height = len(rows)
        self.meta = _normalize_meta(meta)

    @classmethod
    def from_rows(cls, rows, meta=None):
        return cls("\n" + "\n".join(rows), meta)

    def __repr__(self):
        return (f"Level({self.width}x{self.height}, nodes={len(self.meta['nodes'])}, "
                f"edges={len(self.meta['edges'])})")


class LevelSet:
    """Road-tile alphabet plus the ordered list of levels."""

    def __init__(self, road_tiles, levels=None):
        self.road_tiles = frozenset(road_tiles) - {"\n"}
        self.levels = list(levels or [])

    def __len__(self):
        return len(self.levels)

    def __getitem__(self, index):
        return self.levels[index]

    def add_custom(self, template, meta=None):
        """Append a level (e.g. a map under test) and return its index."""
        if isinstance(template, Level):
            level = template
        else:
            if not template.startswith("\n"):
                template = "\n" + template
            level = Level(template, meta)
        self.levels.append(level)
        return len(self.levels) - 1


def _parse_meta(text):
    try:
        return _normalize_meta(json.loads(text))
    except ValueError as e:
        print(f"[Level] Failed to parse metadata, falling back to grid movement: {e}")
        return empty_meta()


def parse_levels(text):
    """Parse the level resource format into a LevelSet."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    blocks = text.split("\n\n")
    road_tiles = blocks.pop(0) if blocks else ""

    entries = []  # [template, meta]
    for block in blocks:
        if not block.strip():
            continue

        # metadata separated from its map by a blank line belongs to the previous level
        if block.strip().startswith(META_MARKER):
            if entries:
                entries[-1][1] = _parse_meta(block.split(META_MARKER, 1)[1].strip())
            continue

        parts = block.split("\n" + META_MARKER + "\n", 1)
        map_part = parts[0].strip("\n")
        if not map_part.strip():
            continue
        meta = _parse_meta(parts[1]) if len(parts) > 1 else empty_meta()
        entries.append(["\n" + map_part, meta])

    levels = [Level(template, meta) for template, meta in entries]
    print(f"[Level] Loaded {len(levels)} levels")
    for i, level in enumerate(levels):
        print(f"[Level] Level {i}: {len(level.meta['nodes'])} nodes, {len(level.meta['edges'])} edges")
    return LevelSet(road_tiles, levels)


def load_levels(path=None):
    path = path or os.getenv("CANDY_LEVELS_PATH") or DEFAULT_LEVELS_PATH
    with open(path, encoding="utf-8") as f:
        return parse_levels(f.read())
