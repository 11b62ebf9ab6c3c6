import logging
import threading
from dataclasses import dataclass
from typing import Dict, Optional, Set, Tuple

from qwixx.models import COLORS, DiceRoll, ScoreRecord


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StateSnapshot:
    """Immutable copy of a room's state, safe to serialize outside the
    room lock."""

    room_code: str
    creator: str
    started: bool
    phase: str
    players: Tuple[Tuple[str, bool], ...]
    turn_order: Tuple[str, ...]
    active_index: Optional[int]
    dice: Optional[DiceRoll]
    boards: Tuple[Tuple[str, Tuple[Tuple[str, Tuple[bool, ...]], ...]], ...]
    marks: Tuple[Tuple[str, int, bool], ...]
    dice_rolled: bool
    turn_end_acks: Tuple[str, ...]
    penalties: Tuple[Tuple[str, int], ...]
    locked_rows: Tuple[str, ...]
    game_over: bool
    scoreboard: Optional[Tuple[ScoreRecord, ...]]

    def to_dict(self):
        return {
            'roomCode': self.room_code,
            'creator': self.creator,
            'started': self.started,
            'phase': self.phase,
            'players': [{'name': name, 'online': online} for name, online in self.players],
            'turnOrder': list(self.turn_order),
            'activePlayerIndex': self.active_index,
            'diceValues': self.dice.to_dict() if self.dice else None,
            'boards': {name: {color: list(marks) for color, marks in rows} for name, rows in self.boards},
            'turnMarks': {
                name: {'count': count, 'firstMarkWasWhiteSum': first_white}
                for name, count, first_white in self.marks
            },
            'diceRolled': self.dice_rolled,
            'turnEnded': list(self.turn_end_acks),
            'penalties': dict(self.penalties),
            'lockedRows': list(self.locked_rows),
            'gameOver': self.game_over,
            'scoreboard': [record.to_dict() for record in self.scoreboard] if self.scoreboard else None,
        }


def build_snapshot(session) -> StateSnapshot:
    state = session.state
    return StateSnapshot(
        room_code=session.code,
        creator=state.creator,
        started=state.started,
        phase=state.phase.value,
        players=tuple((p.name, p.online) for p in state.players.values()),
        turn_order=tuple(state.turn_order),
        active_index=state.active_index if state.turn_order else None,
        dice=state.dice,
        boards=tuple(
            (name, tuple((color.value, tuple(board.row(color).marks)) for color in COLORS))
            for name, board in state.boards.items()
        ),
        marks=tuple(
            (name, record.count, record.first_mark_was_white_sum) for name, record in state.marks.items()
        ),
        dice_rolled=state.dice_rolled,
        turn_end_acks=tuple(name for name in state.players if name in state.turn_end_acks),
        penalties=tuple(state.penalties.items()),
        locked_rows=tuple(color.value for color in COLORS if color in state.locked_rows),
        game_over=state.game_over,
        scoreboard=state.scoreboard,
    )


class StateBroadcaster:
    """Delivers snapshots and errors through an emit callable with the
    signature of `SocketIO.emit`.

    Room traffic goes to the Socket.IO room named after the room code;
    the event handlers put each bound connection in it.
    """

    def __init__(self, emit, close_room=None):
        self._emit = emit
        self._close_room = close_room
        self._namespaces: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    def broadcast(self, snapshot: StateSnapshot, namespaces) -> None:
        payload = snapshot.to_dict()
        for namespace in namespaces:
            self._emit('gameState', payload, to=snapshot.room_code, namespace=namespace)

    def send_error(self, connection, error) -> None:
        logger.info(f"[reject] sid={connection.sid} kind={error.kind} message={error.message}")
        self._emit('error', error.to_dict(), to=connection.sid, namespace=connection.namespace)

    def send_created(self, connection, room_code: str) -> None:
        self._emit('newGameCreated', {'roomCode': room_code}, to=connection.sid, namespace=connection.namespace)

    def publish(self, session) -> StateSnapshot:
        """Snapshot `session` under its lock, then deliver to every
        connected client."""
        with session.lock:
            snapshot = build_snapshot(session)
            namespaces = sorted({c.namespace for c in session.binding.connections()})
        with self._lock:
            self._namespaces.setdefault(session.code, set()).update(namespaces)
        self.broadcast(snapshot, namespaces)
        return snapshot

    def close(self, room_code: str) -> None:
        """Empty the Socket.IO room of a removed room code."""
        with self._lock:
            namespaces = self._namespaces.pop(room_code, set())
        if self._close_room is None:
            return
        for namespace in sorted(namespaces):
            self._close_room(room_code, namespace=namespace)
