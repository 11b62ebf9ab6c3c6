import time

from qwixx.connections import Connection
from qwixx.models import Color
from qwixx.services.games.scheduler import cleanup_room, schedule_room_cleanup, sweep_rooms


def test_index(client):
    res = client.get('/')
    assert res.status_code == 200
    assert 'running' in res.get_json()['message']


def test_list_rooms(client, registry):
    assert client.get('/api/rooms').get_json() == {'rooms': [], 'count': 0}
    session, _ = registry.get_or_create('ABCD', 'Alice')
    session.join('Alice', Connection('sid-a'))
    data = client.get('/api/rooms').get_json()
    assert data['count'] == 1
    assert data['rooms'][0] == {
        'room_code': 'ABCD',
        'players': 1,
        'connected': 1,
        'phase': 'waiting_for_players',
    }


def test_room_state(client, registry):
    session, _ = registry.get_or_create('ABCD', 'Alice')
    session.join('Alice', Connection('sid-a'))
    res = client.get('/api/rooms/abcd/state')
    assert res.status_code == 200
    state = res.get_json()
    assert state['roomCode'] == 'ABCD'
    assert state['players'] == [{'name': 'Alice', 'online': True}]
    assert state['boards']['Alice'] == {color.value: [False] * 11 for color in Color}


def test_unknown_room_state(client):
    res = client.get('/api/rooms/NOPE/state')
    assert res.status_code == 404
    assert res.get_json()['kind'] == 'not_found'


def test_cleanup_removes_only_its_session(flask_app, registry):
    old, _ = registry.get_or_create('ABCD', 'Alice')
    assert cleanup_room(flask_app, old) is True
    assert 'ABCD' not in registry
    new, _ = registry.get_or_create('ABCD', 'Bob')
    assert cleanup_room(flask_app, old) is False
    assert registry.find('ABCD') is new


def test_schedule_cleanup_is_disabled_in_tests(flask_app, registry):
    session, _ = registry.get_or_create('ABCD', 'Alice')
    schedule_room_cleanup(flask_app, session)
    assert session.cleanup_scheduled
    assert 'ABCD' in registry


def test_sweep_rooms_skips_offline_active_player(flask_app, registry):
    session, _ = registry.get_or_create('ABCD', 'Alice')
    session.join('Alice', Connection('sid-a'))
    session.join('Bob', Connection('sid-b'))
    session.engine.start_game('Alice', ['Alice', 'Bob'])
    session.state.active_index = 0
    session.disconnect(Connection('sid-a'))

    now = time.time()
    assert sweep_rooms(flask_app, 60, now=now) == []
    assert sweep_rooms(flask_app, 60, now=now + 61) == ['ABCD']
    assert session.state.active_player == 'Bob'


def test_sweep_rooms_removes_deserted_game(flask_app, registry):
    session, _ = registry.get_or_create('ABCD', 'Alice')
    session.join('Alice', Connection('sid-a'))
    session.join('Bob', Connection('sid-b'))
    session.engine.start_game('Alice', ['Alice', 'Bob'])
    session.disconnect(Connection('sid-a'))
    session.disconnect(Connection('sid-b'))

    now = time.time()
    assert sweep_rooms(flask_app, 60, now=now) == []
    assert 'ABCD' in registry
    assert sweep_rooms(flask_app, 60, now=now + 61) == []
    assert 'ABCD' not in registry
    assert session.closed
