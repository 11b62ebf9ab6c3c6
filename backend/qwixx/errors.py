"""Typed domain errors.

Every rejection raised by the room and turn logic is a GameError. The
Socket.IO layer catches them, sends the message to the requester only and
re-broadcasts the room state; nothing here is fatal to a room.
"""


class GameError(Exception):
    """Base class for rejected actions."""

    kind = 'error'

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {'message': self.message, 'kind': self.kind}


class ValidationError(GameError):
    """Illegal move given the current rules and state."""

    kind = 'validation'


class AuthorizationError(GameError):
    """Requester is not allowed to perform the action."""

    kind = 'authorization'


class StateError(GameError):
    """Action attempted in the wrong phase."""

    kind = 'state'


class NotFoundError(GameError):
    """Unknown room or player referenced."""

    kind = 'not_found'
