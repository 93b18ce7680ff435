# candymaze/protocol.py - JSON frames and the game-state message taxonomy
import json

from .errors import ProtocolError

ENVELOPE_TYPE = "gameState"
PING_TYPE = "ping"

# wire key -> session attribute
SNAPSHOT_FIELDS = {
    "map": "map",
    "score": "score",
    "moves": "moves",
    "facing": "facing",
    "lastDirection": "last_direction",
    "charAtNewIndex": "char_at_new_index",
    "candyHouseIndex": "candy_house_index",
    "activePlayerCharacter": "active_player_character",
}
WIRE_NAMES = {attr: wire for wire, attr in SNAPSHOT_FIELDS.items()}


def encode(msg: dict) -> str:
    """Convert a Python dict to a JSON string."""
    return json.dumps(msg)


def decode(text: str) -> dict:
    """Convert a JSON string back to a Python dict."""
    try:
        data = json.loads(text)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"invalid JSON frame: {e}") from e
    if not isinstance(data, dict):
        raise ProtocolError("frame is not a JSON object")
    return data


class GameMessage:
    """Base for every message sent inside the ``gameState`` envelope.

    ``snapshot`` holds only the session fields the sender chose to include,
    keyed by session attribute name; the receiver merges exactly those.
    """

    type = None

    def __init__(self, **snapshot):
        unknown = set(snapshot) - set(WIRE_NAMES)
        if unknown:
            raise TypeError(f"unknown snapshot fields: {sorted(unknown)}")
        self.snapshot = snapshot

    def _fields(self):
        return {}

    def to_data(self):
        data = {WIRE_NAMES[k]: v for k, v in self.snapshot.items()}
        data.update(self._fields())
        if self.type:
            data["type"] = self.type
        return data

    def __eq__(self, other):
        return type(self) is type(other) and self.to_data() == other.to_data()

    def __repr__(self):
        return f"{type(self).__name__}({self.to_data()!r})"


class StateUpdate(GameMessage):
    pass


class InitialSync(GameMessage):
    type = "initialSync"

    def __init__(self, level=0, **snapshot):
        super().__init__(**snapshot)
        self.level = level

    def _fields(self):
        return {"level": self.level}


class RoleSwitch(GameMessage):
    type = "roleSwitch"

    def __init__(self, level, active_player_character, score):
        super().__init__()
        self.level = level
        self.active_player_character = active_player_character
        self.score = score

    def _fields(self):
        return {
            "level": self.level,
            "activePlayerCharacter": self.active_player_character,
            "score": self.score,
        }


class LevelStart(GameMessage):
    type = "levelStart"

    def __init__(self, level=None, **snapshot):
        super().__init__(**snapshot)
        self.level = level

    def _fields(self):
        return {} if self.level is None else {"level": self.level}


class HouseInteraction(GameMessage):
    type = "houseInteraction"

    def __init__(self, success, **snapshot):
        super().__init__(**snapshot)
        self.success = bool(success)

    def _fields(self):
        return {"success": self.success}


class LevelWin(GameMessage):
    type = "levelWin"


def message_from_data(data):
    snapshot = {SNAPSHOT_FIELDS[k]: v for k, v in data.items() if k in SNAPSHOT_FIELDS}
    kind = data.get("type")
    if kind == InitialSync.type:
        return InitialSync(data.get("level", 0), **snapshot)
    if kind == RoleSwitch.type:
        return RoleSwitch(data.get("level"), data.get("activePlayerCharacter"), data.get("score"))
    if kind == LevelStart.type:
        return LevelStart(data.get("level"), **snapshot)
    if kind == HouseInteraction.type:
        return HouseInteraction(data.get("success"), **snapshot)
    if kind == LevelWin.type:
        return LevelWin(**snapshot)
    return StateUpdate(**snapshot)


def encode_message(message: GameMessage) -> str:
    return encode({"type": ENVELOPE_TYPE, "data": message.to_data()})


def decode_message(text: str):
    """Decode a peer frame. Returns None for transport pings."""
    frame = decode(text)
    if frame.get("type") == PING_TYPE:
        return None
    if frame.get("type") != ENVELOPE_TYPE or not isinstance(frame.get("data"), dict):
        raise ProtocolError(f"unexpected frame type: {frame.get('type')!r}")
    return message_from_data(frame["data"])
