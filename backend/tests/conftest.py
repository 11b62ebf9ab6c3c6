import os
import random
import sys
import pytest

# Ensure the backend root (containing the `qwixx` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from qwixx import create_app, get_registry, socketio


def _seeded_rng():
    return random.Random(1234)


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    CORS_ORIGINS = ['http://localhost:5173']
    MIN_PLAYERS = 1
    GAME_OVER_CLEANUP_SEC = 0
    OFFLINE_SKIP_SEC = 60
    RNG_FACTORY = _seeded_rng


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        yield application


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def registry(flask_app):
    return get_registry(flask_app)


@pytest.fixture()
def make_sio_client(flask_app):
    """Factory for extra Socket.IO clients; all are disconnected on teardown."""
    clients = []

    def _make():
        test_client = socketio.test_client(
            flask_app,
            flask_test_client=flask_app.test_client(),
            namespace='/ws'
        )
        clients.append(test_client)
        return test_client

    yield _make
    for test_client in clients:
        try:
            if test_client.is_connected('/ws'):
                test_client.disconnect(namespace='/ws')
        except RuntimeError:
            pass


@pytest.fixture()
def sio_client(make_sio_client):
    return make_sio_client()
