"""Turn state machine and marking rules.

WAITING_FOR_PLAYERS -> ROLL_PHASE -> MARK_PHASE -> ROLL_PHASE ... -> GAME_OVER

The engine works on a GameState owned by a RoomSession and is only ever
called with the room lock held. Every public operation either applies all
of its changes or raises a GameError before touching the state.
"""

import logging
import random
from typing import Dict, Iterable, Optional, Set

from qwixx.errors import AuthorizationError, NotFoundError, StateError, ValidationError
from qwixx.models import (
    HIGHEST_NUMBER,
    LOWEST_NUMBER,
    WHITE,
    Color,
    DiceRoll,
    GameState,
    Phase,
    TurnMarkRecord,
)
from .scoring import check_game_over


logger = logging.getLogger(__name__)

MARKS_BEFORE_TERMINAL = 5
ACTIVE_PLAYER_QUOTA = 2
OTHER_PLAYER_QUOTA = 1


def legal_targets(dice: DiceRoll, locked_rows: Iterable[Color] = ()) -> Dict[int, Set[str]]:
    """Map each markable number to its tags: WHITE and/or the colors whose
    die combines with a white die to make it."""
    targets: Dict[int, Set[str]] = {dice.white_sum: {WHITE}}
    locked = set(locked_rows)
    for color, value in dice.colors:
        if color in locked:
            continue
        for white in (dice.white1, dice.white2):
            targets.setdefault(white + value, set()).add(color)
    return targets


def parse_color(value) -> Color:
    if isinstance(value, Color):
        return value
    try:
        return Color(str(value).lower())
    except ValueError:
        raise ValidationError(f'Unknown row color: {value}')


def parse_number(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError('Number must be an integer')
    if not LOWEST_NUMBER <= value <= HIGHEST_NUMBER:
        raise ValidationError(f'Number must be between {LOWEST_NUMBER} and {HIGHEST_NUMBER}')
    return value


class TurnEngine:
    def __init__(self, state: GameState, rng: Optional[random.Random] = None, min_players: int = 1):
        self.state = state
        self.rng = rng or random.Random()
        self.min_players = min_players

    # ---- guards ----

    def _require_not_over(self) -> None:
        if self.state.game_over:
            raise StateError('The game is over')

    def _require_started(self) -> None:
        self._require_not_over()
        if not self.state.started:
            raise StateError('The game has not started yet')

    def _require_player(self, name: str) -> None:
        if name not in self.state.players:
            raise NotFoundError(f'Unknown player: {name}')

    # ---- start ----

    def start_game(self, requester: str, turn_order=None) -> None:
        state = self.state
        self._require_not_over()
        if requester != state.creator:
            raise AuthorizationError('Only the room creator can start the game')
        if state.started:
            raise StateError('The game has already started')
        if len(state.players) < self.min_players:
            raise StateError(f'At least {self.min_players} players are required to start')

        if turn_order:
            order = tuple(turn_order)
            for name in order:
                self._require_player(name)
            if len(set(order)) != len(order) or set(order) != set(state.players):
                raise ValidationError('Turn order must list every player exactly once')
        else:
            names = list(state.players)
            self.rng.shuffle(names)
            order = tuple(names)

        state.turn_order = order
        state.active_index = self.rng.randrange(len(order))
        state.marks = {name: TurnMarkRecord() for name in state.players}
        state.turn_end_acks = set()
        state.dice = None
        state.dice_rolled = False
        state.phase = Phase.ROLL_PHASE
        self._take_turn_snapshot()
        logger.info(f"[start] order={list(order)} active={state.active_player}")

    # ---- roll ----

    def roll_dice(self, requester: str) -> DiceRoll:
        state = self.state
        self._require_started()
        if requester != state.active_player:
            raise ValidationError('Only the active player can roll the dice')
        if state.dice_rolled:
            raise StateError('Dice have already been rolled this turn')

        white1 = self.rng.randint(1, 6)
        white2 = self.rng.randint(1, 6)
        colors = tuple((color, self.rng.randint(1, 6)) for color in state.active_colors())
        state.dice = DiceRoll(white1=white1, white2=white2, colors=colors)
        state.dice_rolled = True
        state.phase = Phase.MARK_PHASE
        self._take_turn_snapshot()
        logger.info(f"[roll] player={requester} dice={state.dice.to_dict()}")
        return state.dice

    # ---- mark ----

    def validate_mark(self, requester: str, color, number) -> Optional[Color]:
        """Run every marking check without mutating anything.

        Returns the color to flag for deferred locking, or None.
        """
        state = self.state
        self._require_not_over()
        color = parse_color(color)
        number = parse_number(number)

        if not state.dice_rolled or state.dice is None:
            raise StateError('Dice have not been rolled this turn')
        board = state.boards.get(requester)
        if board is None:
            raise NotFoundError(f'Unknown player: {requester}')
        if color in state.locked_rows:
            raise ValidationError(f'The {color.value} row is locked')

        dice = state.dice
        white_sum = dice.white_sum
        targets = legal_targets(dice, state.locked_rows)
        if number not in targets:
            raise ValidationError(f'{number} cannot be made from the current dice')
        if number != white_sum and color not in targets[number]:
            raise ValidationError(f'{number} cannot be marked in the {color.value} row with the current dice')

        row = board.row(color)
        if row.is_marked(number):
            raise ValidationError(f'{number} is already marked in the {color.value} row')
        if row.is_behind_frontier(number):
            raise ValidationError(f'Cannot mark {number} behind an already marked number in the {color.value} row')

        record = state.marks[requester]
        if requester == state.active_player:
            if record.count >= ACTIVE_PLAYER_QUOTA:
                raise ValidationError('You have already marked twice this turn')
            if record.count == 1:
                if not record.first_mark_was_white_sum:
                    raise ValidationError('No second mark is allowed after a colored first mark')
                if color not in targets[number]:
                    raise ValidationError('The second mark must use a white die and a colored die')
        else:
            if record.count >= OTHER_PLAYER_QUOTA:
                raise ValidationError('Only the active player may mark twice in a turn')
            if number != white_sum:
                raise ValidationError(f'You must mark the neutral sum ({white_sum})')

        if number == row.terminal_number:
            if row.count < MARKS_BEFORE_TERMINAL:
                raise ValidationError(
                    f'At least {MARKS_BEFORE_TERMINAL} marks are needed in the {color.value} row before {number}'
                )
            return color
        return None

    def mark_cell(self, requester: str, color, number) -> None:
        state = self.state
        lock_color = self.validate_mark(requester, color, number)
        color = parse_color(color)
        record = state.marks[requester]

        state.boards[requester].row(color).mark(number)
        if record.count == 0:
            record.first_mark_was_white_sum = number == state.dice.white_sum
        record.count += 1
        if lock_color is not None:
            state.pending_locks.add(lock_color)
            logger.info(f"[lock] player={requester} row={lock_color.value} pending until turn end")
        logger.info(f"[mark] player={requester} row={color.value} number={number} count={record.count}")

    # ---- end of turn ----

    def end_turn(self, requester: str) -> bool:
        """Acknowledge the end of the turn. Returns True when this
        acknowledgement completed the turn."""
        state = self.state
        self._require_started()
        self._require_player(requester)

        state.turn_end_acks.add(requester)
        logger.info(f"[end-turn] player={requester} acks={len(state.turn_end_acks)}/{len(state.players)}")
        if not set(state.players) <= state.turn_end_acks:
            return False
        self._finish_turn()
        return True

    def skip_turn(self, player_name: str) -> None:
        """End the turn of an active player who never rolled."""
        state = self.state
        self._require_started()
        if player_name != state.active_player:
            raise ValidationError(f'{player_name} is not the active player')
        if state.dice_rolled:
            raise StateError('Dice have already been rolled this turn')
        logger.info(f"[skip] player={player_name}")
        self._finish_turn()

    def _finish_turn(self) -> None:
        state = self.state
        active = state.active_player
        if state.dice_rolled and state.marks.get(active, TurnMarkRecord()).count == 0:
            state.penalties[active] = state.penalties.get(active, 0) + 1
            logger.info(f"[penalty] player={active} penalties={state.penalties[active]}")

        if state.pending_locks:
            state.locked_rows |= state.pending_locks
            logger.info(f"[lock] committed rows={sorted(c.value for c in state.pending_locks)}")
            state.pending_locks = set()

        state.dice = None
        if check_game_over(state):
            return

        state.active_index = (state.active_index + 1) % len(state.turn_order)
        state.dice_rolled = False
        state.turn_end_acks = set()
        state.marks = {name: TurnMarkRecord() for name in state.players}
        state.phase = Phase.ROLL_PHASE
        self._take_turn_snapshot()
        check_game_over(state)

    # ---- reset ----

    def reset_turn_for_player(self, requester: str) -> None:
        state = self.state
        self._require_not_over()
        self._require_player(requester)
        if not state.dice_rolled:
            raise StateError('Dice have not been rolled this turn')
        if requester in state.turn_end_acks:
            raise StateError('You have already ended your turn')

        state.boards[requester] = state.snapshot_boards[requester].copy()
        state.marks[requester] = state.snapshot_marks[requester].copy()
        self._recompute_pending_locks()
        logger.info(f"[reset] player={requester}")

    def _recompute_pending_locks(self) -> None:
        """Keep only the pending locks still backed by a marked terminal cell
        made this turn."""
        state = self.state
        pending = set()
        for color in state.pending_locks:
            for name, board in state.boards.items():
                row = board.row(color)
                before = state.snapshot_boards.get(name)
                marked_before = before is not None and before.row(color).is_marked(row.terminal_number)
                if row.is_marked(row.terminal_number) and not marked_before:
                    pending.add(color)
                    break
        state.pending_locks = pending

    def _take_turn_snapshot(self) -> None:
        state = self.state
        state.snapshot_boards = {name: board.copy() for name, board in state.boards.items()}
        state.snapshot_marks = {name: record.copy() for name, record in state.marks.items()}

