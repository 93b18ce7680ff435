# candymaze/errors.py


class LevelFormatError(ValueError):
    """Raised when a level block cannot be turned into a playable grid."""


class ProtocolError(ValueError):
    """Raised when a peer frame is not a valid game-state envelope."""


class RoomError(Exception):
    """Base class for room lifecycle failures surfaced to a participant."""

    code = "room_error"
    default_message = "Room error"

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class RoomNotFound(RoomError):
    code = "not_found"
    default_message = "Room not found"


class RoomExpired(RoomError):
    code = "expired"
    default_message = "Room has expired. Please ask the host to create a new room."


class RoomFull(RoomError):
    code = "full"
    default_message = "Room is full"


class GameInProgress(RoomError):
    code = "in_progress"
    default_message = "Game is already in progress. Please wait for the current game to finish."


class InvalidHost(RoomError):
    code = "invalid_host"
    default_message = "Host has disconnected. Please ask them to create a new room."


class RoomCodeUnavailable(RoomError):
    code = "code_unavailable"
    default_message = "Failed to generate unique room code. Please try again."


class BadRequest(RoomError):
    code = "bad_request"
    default_message = "Bad request"


ROOM_ERRORS = {
    cls.code: cls
    for cls in (RoomNotFound, RoomExpired, RoomFull, GameInProgress,
                InvalidHost, RoomCodeUnavailable, BadRequest)
}


def room_error_from_code(code, message=None):
    """Rebuild the exception a server error frame describes."""
    cls = ROOM_ERRORS.get(code, RoomError)
    return cls(message)
