from flask import Blueprint, jsonify

from qwixx import get_registry
from qwixx.broadcast import build_snapshot
from qwixx.commands import normalize_room_code
from qwixx.errors import GameError, NotFoundError


rooms = Blueprint('rooms', __name__)


@rooms.errorhandler(NotFoundError)
def handle_not_found(exc):
    return jsonify(exc.to_dict()), 404


@rooms.errorhandler(GameError)
def handle_game_error(exc):
    return jsonify(exc.to_dict()), 400


@rooms.route('', methods=['GET'])
def list_rooms():
    """Room codes with their roster size and phase."""
    registry = get_registry()
    payload = []
    for session in registry.sessions():
        with session.lock:
            payload.append({
                'room_code': session.code,
                'players': len(session.state.players),
                'connected': len(session.binding),
                'phase': session.state.phase.value,
            })
    payload.sort(key=lambda r: r['room_code'])
    return jsonify({'rooms': payload, 'count': len(payload)})


@rooms.route('/<string:room_code>/state', methods=['GET'])
def get_room_state(room_code):
    session = get_registry().get(normalize_room_code(room_code))
    with session.lock:
        snapshot = build_snapshot(session)
    return jsonify(snapshot.to_dict())
