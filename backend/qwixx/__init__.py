from flask import Flask, current_app
from flask_cors import CORS
from flask_socketio import SocketIO
import random
from config import Config

socketio = SocketIO(async_mode=None)


def _rng_factory(config):
    factory = config.get('RNG_FACTORY')
    if factory is not None:
        return factory
    seed = config.get('DICE_SEED')
    if seed is not None:
        return lambda: random.Random(seed)
    return random.Random


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    allowed_origins = flask_app.config.get('CORS_ORIGINS') or '*'
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # Per-app room state; nothing about rooms lives at module level
    from qwixx.broadcast import StateBroadcaster
    from qwixx.rooms import RoomRegistry
    flask_app.extensions['qwixx'] = {
        'rooms': RoomRegistry(
            rng_factory=_rng_factory(flask_app.config),
            min_players=int(flask_app.config.get('MIN_PLAYERS', 1)),
        ),
        'broadcaster': StateBroadcaster(socketio.emit, socketio.close_room),
    }

    from qwixx.main import main
    flask_app.register_blueprint(main)

    from qwixx.api.rooms import rooms
    flask_app.register_blueprint(rooms, url_prefix='/api/rooms')

    # Register Socket.IO event handlers on the initialized socketio instance
    from qwixx.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    from qwixx.services.games.scheduler import start_offline_sweeper
    start_offline_sweeper(flask_app)

    return flask_app


def get_registry(app=None):
    app = app or current_app
    return app.extensions['qwixx']['rooms']


def get_broadcaster(app=None):
    app = app or current_app
    return app.extensions['qwixx']['broadcaster']
