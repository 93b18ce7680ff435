# candymaze/path_graph.py - routing graph over junctions and house stops
from typing import Dict, List, Optional, Set

from .tiles import DIR_VECS

PLAIN = "plain"
JUNCTION = "junction"
HOUSE_STOP = "houseStop"
BOTH = "both"

STOP_TYPES = (JUNCTION, BOTH)
HOUSE_TYPES = (HOUSE_STOP, BOTH)


def _sign(value):
    return (value > 0) - (value < 0)


class PathGraph:
    """Undirected graph built once per level from its metadata."""

    def __init__(self, meta=None):
        meta = meta or {}
        self.nodes: List[dict] = []
        self.adjacency: Dict[int, Set[int]] = {}
        self._coord_to_index: Dict[tuple, int] = {}

        for raw in meta.get("nodes", []):
            try:
                node = {"x": int(raw["x"]), "y": int(raw["y"]), "type": raw.get("type") or PLAIN}
            except (KeyError, TypeError, ValueError):
                continue
            self._coord_to_index[(node["x"], node["y"])] = len(self.nodes)
            self.nodes.append(node)

        for edge in meta.get("edges", []):
            try:
                a = self._coord_to_index.get((edge["from"]["x"], edge["from"]["y"]))
                b = self._coord_to_index.get((edge["to"]["x"], edge["to"]["y"]))
            except (KeyError, TypeError):
                continue
            if a is None or b is None or a == b:
                continue
            self.adjacency.setdefault(a, set()).add(b)
            self.adjacency.setdefault(b, set()).add(a)

    def __len__(self):
        return len(self.nodes)

    @property
    def edge_count(self):
        return sum(len(n) for n in self.adjacency.values()) // 2

    def is_empty(self):
        return not self.nodes

    def node_at(self, x, y) -> Optional[int]:
        return self._coord_to_index.get((x, y))

    def neighbors(self, index):
        # sorted so that ties resolve the same way on every client
        return sorted(self.adjacency.get(index, ()))

    def forward_neighbor(self, from_index, facing) -> Optional[int]:
        """Closest neighbor lying exactly on the facing axis, or None."""
        dir_x, dir_y = DIR_VECS[facing]
        cur = self.nodes[from_index]
        best, best_dist = None, None
        for n_index in self.neighbors(from_index):
            n = self.nodes[n_index]
            dx, dy = n["x"] - cur["x"], n["y"] - cur["y"]
            if dir_x != 0:
                if dy != 0 or _sign(dx) != dir_x:
                    continue
                dist = abs(dx)
            else:
                if dx != 0 or _sign(dy) != dir_y:
                    continue
                dist = abs(dy)
            if dist > 0 and (best_dist is None or dist < best_dist):
                best, best_dist = n_index, dist
        return best

    def has_perpendicular_branch(self, at_index, facing):
        dir_x, dir_y = DIR_VECS[facing]
        cur = self.nodes[at_index]
        for n_index in self.neighbors(at_index):
            n = self.nodes[n_index]
            dx, dy = n["x"] - cur["x"], n["y"] - cur["y"]
            is_back = ((dir_x != 0 and dy == 0 and _sign(dx) == -dir_x)
                       or (dir_y != 0 and dx == 0 and _sign(dy) == -dir_y))
            if is_back:
                continue
            if dir_x != 0 and dx == 0 and dy != 0:
                return True
            if dir_y != 0 and dy == 0 and dx != 0:
                return True
        return False

    def to_meta(self):
        """Serialize back to the level metadata shape."""
        edges = []
        for a in sorted(self.adjacency):
            for b in sorted(self.adjacency[a]):
                if a < b:
                    na, nb = self.nodes[a], self.nodes[b]
                    edges.append({"from": {"x": na["x"], "y": na["y"]},
                                  "to": {"x": nb["x"], "y": nb["y"]}})
        return {"nodes": [dict(n) for n in self.nodes], "edges": edges}
