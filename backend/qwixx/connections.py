import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from qwixx.errors import StateError, ValidationError
from qwixx.models import GameState


logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 32


@dataclass(frozen=True)
class Connection:
    """A live client channel: a Socket.IO session id and its namespace."""

    sid: str
    namespace: str = '/ws'


def normalize_player_name(name) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError('playerName is required')
    name = name.strip()
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f'playerName must be at most {MAX_NAME_LENGTH} characters')
    return name


class ConnectionBinding:
    """Binds player names of one room to their live connections.

    Only the roster and the connectivity flags are touched here; turn
    progress belongs to the TurnEngine.
    """

    def __init__(self, state: GameState, clock=time.time):
        self.state = state
        self.clock = clock
        self._connections: Dict[str, Connection] = {}

    def join(self, player_name, connection: Connection) -> Optional[Connection]:
        """Add or reconnect `player_name` on `connection`.

        Returns the connection this one replaced, if any.
        """
        name = normalize_player_name(player_name)
        state = self.state
        player = state.players.get(name)

        if not state.started:
            if player is None:
                player = state.add_player(name)
                logger.info(f"[join] player={name} roster={len(state.players)}")
        elif player is None:
            raise StateError('Game has already started')
        elif player.online:
            raise StateError(f'{name} is already connected')
        else:
            logger.info(f"[reconnect] player={name}")

        replaced = self._connections.get(name)
        self._connections[name] = connection
        player.online = True
        player.offline_since = None
        if replaced == connection:
            return None
        return replaced

    def disconnect(self, connection: Connection) -> Optional[str]:
        """Mark the player bound to `connection` offline. Returns the name,
        or None when the connection is no longer the player's live one."""
        name = self.player_for(connection)
        if name is None:
            return None
        del self._connections[name]
        player = self.state.players[name]
        player.online = False
        player.offline_since = self.clock()
        logger.info(f"[disconnect] player={name}")
        return name

    def player_for(self, connection: Connection) -> Optional[str]:
        for name, bound in self._connections.items():
            if bound == connection:
                return name
        return None

    def connection_for(self, player_name: str) -> Optional[Connection]:
        return self._connections.get(player_name)

    def connections(self) -> List[Connection]:
        return list(self._connections.values())

    def __len__(self):
        return len(self._connections)
