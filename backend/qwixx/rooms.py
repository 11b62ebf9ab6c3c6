import logging
import random
import threading
import time
from typing import Dict, List, Optional, Tuple

from qwixx.commands import EndTurn, MarkCell, ResetTurn, RollDice, StartGame
from qwixx.connections import Connection, ConnectionBinding, normalize_player_name
from qwixx.errors import AuthorizationError, NotFoundError, StateError
from qwixx.models import GameState, generate_room_code
from qwixx.services.games.turns import TurnEngine


logger = logging.getLogger(__name__)


class RoomSession:
    """One room: authoritative GameState plus its connections.

    `lock` serializes everything that reads or writes the state. Callers
    that need a consistent snapshot after an action hold it across both.
    """

    def __init__(self, code: str, creator: str, rng=None, min_players: int = 1, clock=time.time):
        self.code = code
        self.state = GameState(creator=creator)
        self.engine = TurnEngine(self.state, rng=rng, min_players=min_players)
        self.binding = ConnectionBinding(self.state, clock=clock)
        self.lock = threading.RLock()
        self.clock = clock
        self.closed = False
        self.cleanup_scheduled = False
        self._handlers = {
            StartGame: self._start_game,
            RollDice: self._roll_dice,
            MarkCell: self._mark_cell,
            EndTurn: self._end_turn,
            ResetTurn: self._reset_turn,
        }

    @property
    def creator(self) -> str:
        return self.state.creator

    def join(self, player_name: str, connection: Connection) -> Optional[Connection]:
        with self.lock:
            return self.binding.join(player_name, connection)

    def disconnect(self, connection: Connection) -> Optional[str]:
        with self.lock:
            return self.binding.disconnect(connection)

    def is_abandoned(self) -> bool:
        """Nobody is connected and the game never started."""
        return not self.state.started and len(self.binding) == 0

    def execute(self, requester: str, command) -> None:
        handler = self._handlers.get(type(command))
        if handler is None:
            raise StateError(f'{type(command).__name__} cannot be sent to a room')
        with self.lock:
            if self.closed:
                raise NotFoundError(f'Room {self.code} is closed')
            if requester not in self.state.players:
                raise NotFoundError(f'Unknown player: {requester}')
            handler(requester, command)

    def _check_identity(self, requester: str, claimed: str) -> None:
        if normalize_player_name(claimed) != requester:
            raise AuthorizationError('You can only act for yourself')

    def _start_game(self, requester, command: StartGame):
        self.engine.start_game(requester, command.turn_order)

    def _roll_dice(self, requester, command: RollDice):
        self.engine.roll_dice(requester)

    def _mark_cell(self, requester, command: MarkCell):
        self._check_identity(requester, command.player_name)
        self.engine.mark_cell(requester, command.color, command.number)

    def _end_turn(self, requester, command: EndTurn):
        self._check_identity(requester, command.player_name)
        self.engine.end_turn(requester)

    def _reset_turn(self, requester, command: ResetTurn):
        self._check_identity(requester, command.player_name)
        self.engine.reset_turn_for_player(requester)

    def _expired_offline(self, grace_sec: float, now: float) -> List[str]:
        return [
            p.name for p in self.state.players.values()
            if not p.online and p.offline_since is not None and now - p.offline_since >= grace_sec
        ]

    def is_deserted(self, grace_sec: float, now: Optional[float] = None) -> bool:
        """Started, and every roster player has been offline for at least
        `grace_sec` seconds."""
        now = self.clock() if now is None else now
        with self.lock:
            if not self.state.started:
                return False
            return len(self._expired_offline(grace_sec, now)) == len(self.state.players)

    def sweep_offline(self, grace_sec: float, now: Optional[float] = None) -> bool:
        """Keep the game moving past players who stay offline.

        An offline active player who has not rolled loses the turn without
        a penalty; once dice are rolled, offline players are counted as
        having ended their turn. A room where everyone has left is not
        swept. Returns True if the state changed.
        """
        now = self.clock() if now is None else now
        changed = False
        with self.lock:
            state = self.state
            if not state.started or state.game_over:
                return False
            expired = self._expired_offline(grace_sec, now)
            # Nobody left to play for; the room is removed instead
            if not expired or len(expired) == len(state.players):
                return False
            if not state.dice_rolled and state.active_player in expired:
                self.engine.skip_turn(state.active_player)
                changed = True
            if state.dice_rolled:
                for name in expired:
                    if state.game_over or not state.dice_rolled:
                        break
                    if name not in state.turn_end_acks:
                        self.engine.end_turn(name)
                        changed = True
        return changed


class RoomRegistry:
    """Room code -> RoomSession, plus the connection -> (room, player)
    table consulted for every incoming message."""

    def __init__(self, rng_factory=None, min_players: int = 1, clock=time.time):
        self._rooms: Dict[str, RoomSession] = {}
        self._bindings: Dict[Connection, Tuple[str, str]] = {}
        self._lock = threading.Lock()
        self._rng_factory = rng_factory or random.Random
        self.min_players = min_players
        self.clock = clock

    def get_or_create(self, room_code: str, creator_name: str) -> Tuple[RoomSession, bool]:
        with self._lock:
            session = self._rooms.get(room_code)
            if session is not None:
                return session, False
            session = RoomSession(
                room_code,
                creator_name,
                rng=self._rng_factory(),
                min_players=self.min_players,
                clock=self.clock,
            )
            self._rooms[room_code] = session
        logger.info(f"[room-created] room={room_code} creator={creator_name}")
        return session, True

    def new_code(self) -> str:
        with self._lock:
            return generate_room_code(self._rooms)

    def find(self, room_code: str) -> Optional[RoomSession]:
        return self._rooms.get(room_code)

    def get(self, room_code: str) -> RoomSession:
        session = self._rooms.get(room_code)
        if session is None:
            raise NotFoundError(f'Room {room_code} not found')
        return session

    def remove(self, room_code: str, session: Optional[RoomSession] = None) -> bool:
        with self._lock:
            current = self._rooms.get(room_code)
            if current is None or (session is not None and current is not session):
                return False
            del self._rooms[room_code]
            current.closed = True
            for connection in [c for c, (code, _) in self._bindings.items() if code == room_code]:
                del self._bindings[connection]
        logger.info(f"[cleanup] room={room_code} removed")
        return True

    def bind(self, connection: Connection, room_code: str, player_name: str) -> None:
        with self._lock:
            self._bindings[connection] = (room_code, player_name)

    def lookup(self, connection: Connection) -> Optional[Tuple[str, str]]:
        return self._bindings.get(connection)

    def unbind(self, connection: Connection) -> Optional[Tuple[str, str]]:
        with self._lock:
            return self._bindings.pop(connection, None)

    def resolve(self, connection: Connection) -> Tuple[RoomSession, str]:
        bound = self.lookup(connection)
        if bound is None:
            raise NotFoundError('Join a room first')
        room_code, player_name = bound
        return self.get(room_code), player_name

    def sessions(self) -> List[RoomSession]:
        return list(self._rooms.values())

    def codes(self) -> List[str]:
        return sorted(self._rooms)

    def __contains__(self, room_code):
        return room_code in self._rooms

    def __len__(self):
        return len(self._rooms)
