"""Client commands.

Each Socket.IO event maps to one frozen dataclass carrying its required
fields; `parse_command` turns a raw event payload into one of them.
"""

from dataclasses import dataclass
from typing import Optional, Tuple, Union

from qwixx.errors import ValidationError


@dataclass(frozen=True)
class JoinRoom:
    room_code: Optional[str]
    player_name: str


@dataclass(frozen=True)
class StartGame:
    turn_order: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RollDice:
    pass


@dataclass(frozen=True)
class MarkCell:
    player_name: str
    color: str
    number: int


@dataclass(frozen=True)
class EndTurn:
    player_name: str


@dataclass(frozen=True)
class ResetTurn:
    player_name: str


Command = Union[JoinRoom, StartGame, RollDice, MarkCell, EndTurn, ResetTurn]


def normalize_room_code(code) -> Optional[str]:
    if code is None:
        return None
    if not isinstance(code, str):
        raise ValidationError('roomCode must be a string')
    code = code.strip().upper()
    return code or None


def _require(data, key):
    if key not in data or data[key] is None:
        raise ValidationError(f'{key} is required')
    return data[key]


def _name(data):
    name = _require(data, 'playerName')
    if not isinstance(name, str):
        raise ValidationError('playerName must be a string')
    return name


def _parse_join(data):
    return JoinRoom(room_code=normalize_room_code(data.get('roomCode')), player_name=_name(data))


def _parse_start(data):
    order = data.get('turnOrder') or []
    if not isinstance(order, (list, tuple)) or not all(isinstance(n, str) for n in order):
        raise ValidationError('turnOrder must be a list of player names')
    return StartGame(turn_order=tuple(n.strip() for n in order))


def _parse_mark(data):
    return MarkCell(player_name=_name(data), color=_require(data, 'color'), number=_require(data, 'number'))


_PARSERS = {
    'joinRoom': _parse_join,
    'startGame': _parse_start,
    'rollDice': lambda data: RollDice(),
    'markCell': _parse_mark,
    'endTurn': lambda data: EndTurn(player_name=_name(data)),
    'resetTurnForPlayer': lambda data: ResetTurn(player_name=_name(data)),
}

EVENT_NAMES = tuple(_PARSERS)


def parse_command(event: str, data) -> Command:
    parser = _PARSERS.get(event)
    if parser is None:
        raise ValidationError(f'Unknown message type: {event}')
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError('Message payload must be an object')
    return parser(data)
