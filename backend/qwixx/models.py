from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple
import random
import string


ROW_LENGTH = 11
LOWEST_NUMBER = 2
HIGHEST_NUMBER = 12
WHITE = 'white'


class Color(str, Enum):
    RED = 'red'
    YELLOW = 'yellow'
    GREEN = 'green'
    BLUE = 'blue'

    @property
    def ascending(self) -> bool:
        return self in (Color.RED, Color.YELLOW)


COLORS = (Color.RED, Color.YELLOW, Color.GREEN, Color.BLUE)


class Phase(str, Enum):
    WAITING_FOR_PLAYERS = 'waiting_for_players'
    ROLL_PHASE = 'roll_phase'
    MARK_PHASE = 'mark_phase'
    GAME_OVER = 'game_over'


@dataclass
class Row:
    """One scoring track. Cells are stored in marking order, so index 0 is
    2 on ascending rows and 12 on descending rows."""

    color: Color
    marks: List[bool] = field(default_factory=lambda: [False] * ROW_LENGTH)

    @property
    def ascending(self) -> bool:
        return self.color.ascending

    @property
    def terminal_number(self) -> int:
        return HIGHEST_NUMBER if self.ascending else LOWEST_NUMBER

    def index_of(self, number: int) -> int:
        if self.ascending:
            return number - LOWEST_NUMBER
        return HIGHEST_NUMBER - number

    def number_at(self, index: int) -> int:
        if self.ascending:
            return index + LOWEST_NUMBER
        return HIGHEST_NUMBER - index

    def is_marked(self, number: int) -> bool:
        return self.marks[self.index_of(number)]

    def marked_numbers(self) -> List[int]:
        return [self.number_at(i) for i, marked in enumerate(self.marks) if marked]

    @property
    def count(self) -> int:
        return sum(1 for marked in self.marks if marked)

    def frontier(self) -> Optional[int]:
        """Largest marked number on ascending rows, smallest on descending."""
        marked = self.marked_numbers()
        return marked[-1] if marked else None

    def is_behind_frontier(self, number: int) -> bool:
        current = self.frontier()
        if current is None:
            return False
        if self.ascending:
            return number < current
        return number > current

    def mark(self, number: int) -> None:
        self.marks[self.index_of(number)] = True

    def copy(self) -> 'Row':
        return Row(color=self.color, marks=list(self.marks))


@dataclass
class Board:
    rows: Dict[Color, Row]

    @classmethod
    def empty(cls) -> 'Board':
        return cls(rows={color: Row(color) for color in COLORS})

    def row(self, color: Color) -> Row:
        return self.rows[color]

    def copy(self) -> 'Board':
        return Board(rows={color: row.copy() for color, row in self.rows.items()})

    def to_dict(self):
        return {color.value: list(self.rows[color].marks) for color in COLORS}


@dataclass
class TurnMarkRecord:
    count: int = 0
    first_mark_was_white_sum: bool = False

    def copy(self) -> 'TurnMarkRecord':
        return replace(self)

    def to_dict(self):
        return {
            'count': self.count,
            'firstMarkWasWhiteSum': self.first_mark_was_white_sum,
        }


@dataclass
class Player:
    name: str
    online: bool = True
    offline_since: Optional[float] = None

    def to_dict(self):
        return {'name': self.name, 'online': self.online}


@dataclass(frozen=True)
class DiceRoll:
    white1: int
    white2: int
    colors: Tuple[Tuple[Color, int], ...] = ()

    @property
    def white_sum(self) -> int:
        return self.white1 + self.white2

    def color_values(self) -> Dict[Color, int]:
        return dict(self.colors)

    def to_dict(self):
        payload = {'white1': self.white1, 'white2': self.white2}
        for color, value in self.colors:
            payload[color.value] = value
        return payload


@dataclass(frozen=True)
class ScoreRecord:
    name: str
    rows: Tuple[Tuple[Color, int], ...]
    penalties: int
    total: int
    penalty_points: int = 0

    def to_dict(self):
        return {
            'name': self.name,
            'rows': {color.value: score for color, score in self.rows},
            'penalties': self.penalties,
            'penaltyPoints': self.penalty_points,
            'total': self.total,
        }


@dataclass
class GameState:
    """Authoritative state of one room. Only the room's TurnEngine and
    ConnectionBinding mutate it, always under the room lock."""

    creator: str
    phase: Phase = Phase.WAITING_FOR_PLAYERS
    players: Dict[str, Player] = field(default_factory=dict)
    boards: Dict[str, Board] = field(default_factory=dict)
    penalties: Dict[str, int] = field(default_factory=dict)
    marks: Dict[str, TurnMarkRecord] = field(default_factory=dict)
    turn_order: Tuple[str, ...] = ()
    active_index: int = 0
    dice: Optional[DiceRoll] = None
    dice_rolled: bool = False
    turn_end_acks: Set[str] = field(default_factory=set)
    locked_rows: Set[Color] = field(default_factory=set)
    pending_locks: Set[Color] = field(default_factory=set)
    game_over: bool = False
    scoreboard: Optional[Tuple[ScoreRecord, ...]] = None
    snapshot_boards: Dict[str, Board] = field(default_factory=dict)
    snapshot_marks: Dict[str, TurnMarkRecord] = field(default_factory=dict)

    @property
    def started(self) -> bool:
        return self.phase != Phase.WAITING_FOR_PLAYERS

    @property
    def active_player(self) -> Optional[str]:
        if not self.turn_order:
            return None
        return self.turn_order[self.active_index]

    def active_colors(self) -> Tuple[Color, ...]:
        return tuple(color for color in COLORS if color not in self.locked_rows)

    def add_player(self, name: str) -> Player:
        player = Player(name=name)
        self.players[name] = player
        self.boards[name] = Board.empty()
        self.penalties[name] = 0
        self.marks[name] = TurnMarkRecord()
        return player


def generate_room_code(taken, length=4, rng=random):
    """Generate a short room code not present in `taken`."""
    while True:
        code = ''.join(rng.choices(string.ascii_uppercase + string.digits, k=length))
        if code not in taken:
            return code
