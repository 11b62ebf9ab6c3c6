import logging
from typing import List, Tuple

from qwixx.models import COLORS, Board, Color, GameState, Phase, ScoreRecord


logger = logging.getLogger(__name__)

ROW_SCORES = (0, 1, 3, 6, 10, 15, 21, 28, 36, 45, 55, 66, 78)
PENALTY_POINTS = 5
MAX_PENALTIES = 4
LOCKS_TO_END = 2


def row_score(mark_count: int) -> int:
    return ROW_SCORES[max(0, min(mark_count, len(ROW_SCORES) - 1))]


def row_mark_count(board: Board, color: Color, locked_rows) -> int:
    """Marks that count for scoring.

    A player holding the terminal cell of a row that ended up locked gets
    the lock itself as one extra mark.
    """
    row = board.row(color)
    count = row.count
    if color in locked_rows and row.is_marked(row.terminal_number):
        count += 1
    return count


def score_board(name: str, board: Board, penalties: int, locked_rows=()) -> ScoreRecord:
    rows = tuple(
        (color, row_score(row_mark_count(board, color, locked_rows))) for color in COLORS
    )
    penalty_points = -PENALTY_POINTS * penalties
    total = sum(score for _, score in rows) + penalty_points
    return ScoreRecord(name=name, rows=rows, penalties=penalties, total=total, penalty_points=penalty_points)


def compute_scoreboard(state: GameState) -> Tuple[ScoreRecord, ...]:
    """One record per roster player, in join order."""
    return tuple(
        score_board(name, state.boards[name], state.penalties.get(name, 0), state.locked_rows)
        for name in state.players
    )


def winners(scoreboard) -> List[str]:
    if not scoreboard:
        return []
    best = max(record.total for record in scoreboard)
    return [record.name for record in scoreboard if record.total == best]


def is_game_over(state: GameState) -> bool:
    if state.game_over:
        return True
    if any(count >= MAX_PENALTIES for count in state.penalties.values()):
        return True
    return len(state.locked_rows) >= LOCKS_TO_END


def check_game_over(state: GameState) -> bool:
    """Freeze the game if an end condition holds.

    The scoreboard is computed once, at the transition, and never again.
    """
    if state.game_over:
        return True
    if not is_game_over(state):
        return False
    state.game_over = True
    state.phase = Phase.GAME_OVER
    state.scoreboard = compute_scoreboard(state)
    logger.info(
        f"[game-over] penalties={dict(state.penalties)} locked={sorted(c.value for c in state.locked_rows)} "
        f"winners={winners(state.scoreboard)}"
    )
    return True
