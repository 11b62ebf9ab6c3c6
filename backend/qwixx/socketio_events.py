from flask import current_app, request
from flask_socketio import join_room, leave_room

from qwixx import get_broadcaster, get_registry, socketio
from qwixx.commands import parse_command
from qwixx.connections import Connection, normalize_player_name
from qwixx.errors import GameError, StateError
from qwixx.services.games.scheduler import schedule_room_cleanup


def _connection() -> Connection:
    return Connection(sid=request.sid, namespace=request.namespace or '/ws')  # type: ignore


def handle_connect(auth=None):
    current_app.logger.info(f"[connect] sid={request.sid}")  # type: ignore


def handle_disconnect(reason=None):
    """Mark the player offline. A room that never started is dropped as
    soon as its last client leaves."""
    conn = _connection()
    registry = get_registry()
    bound = registry.unbind(conn)
    if not bound:
        return
    room_code, player_name = bound
    leave_room(room_code)
    session = registry.find(room_code)
    if session is None:
        return
    with session.lock:
        session.disconnect(conn)
        abandoned = session.is_abandoned()
        if abandoned:
            registry.remove(room_code, session)
    current_app.logger.info(f"[disconnect] room={room_code} player={player_name} abandoned={abandoned}")
    if abandoned:
        get_broadcaster().close(room_code)
    else:
        get_broadcaster().publish(session)


def handle_join_room(data):
    conn = _connection()
    registry = get_registry()
    broadcaster = get_broadcaster()
    try:
        command = parse_command('joinRoom', data)
        player_name = normalize_player_name(command.player_name)
        room_code = command.room_code or registry.new_code()
        bound = registry.lookup(conn)
        if bound is not None and bound != (room_code, player_name):
            raise StateError('This connection has already joined a room')
    except GameError as exc:
        broadcaster.send_error(conn, exc)
        return

    while True:
        session, created = registry.get_or_create(room_code, player_name)
        try:
            with session.lock:
                if session.closed:
                    # Removed between lookup and lock; the code is free again
                    continue
                replaced = session.join(player_name, conn)
                registry.bind(conn, room_code, player_name)
                join_room(room_code)
                if replaced is not None:
                    registry.unbind(replaced)
                    leave_room(room_code, sid=replaced.sid, namespace=replaced.namespace)
        except GameError as exc:
            broadcaster.send_error(conn, exc)
            broadcaster.publish(session)
            return
        break

    current_app.logger.info(f"[join] room={room_code} player={player_name} created={created}")
    if created:
        broadcaster.send_created(conn, room_code)
    broadcaster.publish(session)


def _handle_action(event: str, data) -> None:
    """Run one room command for the requester bound to this connection.

    Rejections go to the requester only; the room state is re-broadcast
    either way so every client stays in sync.
    """
    conn = _connection()
    broadcaster = get_broadcaster()
    session = None
    try:
        command = parse_command(event, data)
        session, player_name = get_registry().resolve(conn)
        session.execute(player_name, command)
    except GameError as exc:
        broadcaster.send_error(conn, exc)
    if session is None:
        return
    broadcaster.publish(session)
    if session.state.game_over:
        schedule_room_cleanup(current_app._get_current_object(), session)


def handle_start_game(data=None):
    _handle_action('startGame', data)


def handle_roll_dice(data=None):
    _handle_action('rollDice', data)


def handle_mark_cell(data=None):
    _handle_action('markCell', data)


def handle_end_turn(data=None):
    _handle_action('endTurn', data)


def handle_reset_turn(data=None):
    _handle_action('resetTurnForPlayer', data)


_HANDLERS = (
    ('connect', handle_connect),
    ('disconnect', handle_disconnect),
    ('joinRoom', handle_join_room),
    ('startGame', handle_start_game),
    ('rollDice', handle_roll_dice),
    ('markCell', handle_mark_cell),
    ('endTurn', handle_end_turn),
    ('resetTurnForPlayer', handle_reset_turn),
)


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    for event, handler in _HANDLERS:
        socketio.on_event(event, handler, namespace='/ws')

    if testing:
        for event, handler in _HANDLERS:
            socketio.on_event(event, handler, namespace='/')
