from qwixx.models import Color, DiceRoll
from qwixx.services.games.scheduler import cleanup_room


DICE = DiceRoll(3, 5, ((Color.RED, 4), (Color.YELLOW, 1), (Color.GREEN, 2), (Color.BLUE, 6)))


def join(sio, name, code='ABCD'):
    sio.emit('joinRoom', {'roomCode': code, 'playerName': name}, namespace='/ws')


def received(sio):
    return sio.get_received('/ws')


def payloads(packets, name):
    return [pkt['args'][0] for pkt in packets if pkt['name'] == name]


def last_state(packets):
    states = payloads(packets, 'gameState')
    assert states, 'expected a gameState broadcast'
    return states[-1]


def two_player_game(make_sio_client, registry):
    """Alice creates ABCD, Bob joins, Alice starts and goes first."""
    alice = make_sio_client()
    bob = make_sio_client()
    join(alice, 'Alice')
    join(bob, 'Bob')
    alice.emit('startGame', {'turnOrder': ['Alice', 'Bob']}, namespace='/ws')
    registry.get('ABCD').state.active_index = 0
    received(alice)
    received(bob)
    return alice, bob


def test_creator_receives_new_game_created(sio_client):
    join(sio_client, 'Alice')
    packets = received(sio_client)
    assert payloads(packets, 'newGameCreated') == [{'roomCode': 'ABCD'}]
    state = last_state(packets)
    assert state['roomCode'] == 'ABCD'
    assert state['creator'] == 'Alice'
    assert state['started'] is False
    assert state['players'] == [{'name': 'Alice', 'online': True}]


def test_room_code_is_normalized_and_generated(make_sio_client, registry):
    alice = make_sio_client()
    join(alice, 'Alice', code=' abcd ')
    assert 'ABCD' in registry

    cara = make_sio_client()
    cara.emit('joinRoom', {'playerName': 'Cara'}, namespace='/ws')
    created = payloads(received(cara), 'newGameCreated')
    assert len(created) == 1
    assert created[0]['roomCode'] in registry
    assert created[0]['roomCode'] != 'ABCD'


def test_second_player_joins_and_everyone_sees_roster(make_sio_client):
    alice = make_sio_client()
    bob = make_sio_client()
    join(alice, 'Alice')
    received(alice)
    join(bob, 'Bob')
    bob_packets = received(bob)
    assert payloads(bob_packets, 'newGameCreated') == []
    names = [p['name'] for p in last_state(bob_packets)['players']]
    assert names == ['Alice', 'Bob']
    assert [p['name'] for p in last_state(received(alice))['players']] == ['Alice', 'Bob']


def test_repeated_join_does_not_duplicate(make_sio_client):
    alice = make_sio_client()
    join(alice, 'Alice')
    join(alice, 'Alice')
    state = last_state(received(alice))
    assert state['players'] == [{'name': 'Alice', 'online': True}]


def test_one_connection_one_room(sio_client):
    join(sio_client, 'Alice')
    join(sio_client, 'Alice', code='WXYZ')
    errors = payloads(received(sio_client), 'error')
    assert errors and errors[0]['kind'] == 'state'


def test_only_creator_starts(make_sio_client):
    alice = make_sio_client()
    bob = make_sio_client()
    join(alice, 'Alice')
    join(bob, 'Bob')
    received(alice)
    received(bob)
    bob.emit('startGame', {'turnOrder': ['Alice', 'Bob']}, namespace='/ws')
    bob_packets = received(bob)
    errors = payloads(bob_packets, 'error')
    assert errors[0]['kind'] == 'authorization'
    assert last_state(bob_packets)['started'] is False
    alice_packets = received(alice)
    assert payloads(alice_packets, 'error') == []
    assert last_state(alice_packets)['started'] is False


def test_start_game_broadcasts(make_sio_client):
    alice = make_sio_client()
    bob = make_sio_client()
    join(alice, 'Alice')
    join(bob, 'Bob')
    alice.emit('startGame', {'turnOrder': ['Alice', 'Bob']}, namespace='/ws')
    state = last_state(received(bob))
    assert state['started'] is True
    assert state['turnOrder'] == ['Alice', 'Bob']
    assert state['activePlayerIndex'] in (0, 1)
    assert state['phase'] == 'roll_phase'


def test_turn_flow_over_socket(make_sio_client, registry):
    alice, bob = two_player_game(make_sio_client, registry)

    bob.emit('rollDice', {}, namespace='/ws')
    assert payloads(received(bob), 'error')[0]['kind'] == 'validation'
    assert payloads(received(alice), 'error') == []

    alice.emit('rollDice', {}, namespace='/ws')
    assert last_state(received(bob))['diceRolled'] is True
    registry.get('ABCD').state.dice = DICE

    bob.emit('markCell', {'playerName': 'Bob', 'color': 'red', 'number': 9}, namespace='/ws')
    bob_packets = received(bob)
    assert 'neutral sum' in payloads(bob_packets, 'error')[0]['message']
    assert last_state(bob_packets)['boards']['Bob']['red'] == [False] * 11

    alice.emit('markCell', {'playerName': 'Alice', 'color': 'red', 'number': 9}, namespace='/ws')
    state = last_state(received(alice))
    assert state['boards']['Alice']['red'][7] is True
    assert state['turnMarks']['Alice'] == {'count': 1, 'firstMarkWasWhiteSum': False}

    alice.emit('endTurn', {'playerName': 'Alice'}, namespace='/ws')
    assert last_state(received(alice))['turnEnded'] == ['Alice']
    bob.emit('endTurn', {'playerName': 'Bob'}, namespace='/ws')
    state = last_state(received(alice))
    assert state['activePlayerIndex'] == 1
    assert state['diceValues'] is None
    assert state['penalties'] == {'Alice': 0, 'Bob': 0}


def test_reset_turn_over_socket(make_sio_client, registry):
    alice, bob = two_player_game(make_sio_client, registry)
    alice.emit('rollDice', {}, namespace='/ws')
    registry.get('ABCD').state.dice = DICE
    alice.emit('markCell', {'playerName': 'Alice', 'color': 'yellow', 'number': 8}, namespace='/ws')
    alice.emit('markCell', {'playerName': 'Alice', 'color': 'red', 'number': 9}, namespace='/ws')
    alice.emit('resetTurnForPlayer', {'playerName': 'Alice'}, namespace='/ws')
    state = last_state(received(alice))
    assert state['boards']['Alice']['red'] == [False] * 11
    assert state['boards']['Alice']['yellow'] == [False] * 11
    assert state['turnMarks']['Alice']['count'] == 0


def test_cannot_impersonate(make_sio_client, registry):
    alice, bob = two_player_game(make_sio_client, registry)
    alice.emit('rollDice', {}, namespace='/ws')
    bob.emit('endTurn', {'playerName': 'Alice'}, namespace='/ws')
    assert payloads(received(bob), 'error')[0]['kind'] == 'authorization'
    assert registry.get('ABCD').state.turn_end_acks == set()


def test_action_before_joining(sio_client):
    sio_client.emit('rollDice', {}, namespace='/ws')
    errors = payloads(received(sio_client), 'error')
    assert errors[0]['kind'] == 'not_found'


def test_late_join_rejected(make_sio_client, registry):
    two_player_game(make_sio_client, registry)
    cara = make_sio_client()
    join(cara, 'Cara')
    packets = received(cara)
    assert payloads(packets, 'error')[0]['message'] == 'Game has already started'
    assert payloads(packets, 'newGameCreated') == []
    assert 'Cara' not in registry.get('ABCD').state.players


def test_disconnect_and_reconnect(make_sio_client, registry):
    alice, bob = two_player_game(make_sio_client, registry)

    intruder = make_sio_client()
    join(intruder, 'Bob')
    assert 'already connected' in payloads(received(intruder), 'error')[0]['message']

    bob.disconnect(namespace='/ws')
    state = last_state(received(alice))
    assert state['players'] == [{'name': 'Alice', 'online': True}, {'name': 'Bob', 'online': False}]
    assert state['turnOrder'] == ['Alice', 'Bob']

    bob_again = make_sio_client()
    join(bob_again, 'Bob')
    packets = received(bob_again)
    assert payloads(packets, 'error') == []
    assert last_state(packets)['players'][1] == {'name': 'Bob', 'online': True}


def test_room_dropped_when_last_client_leaves_before_start(make_sio_client, registry):
    alice = make_sio_client()
    join(alice, 'Alice', code='WXYZ')
    assert 'WXYZ' in registry
    alice.disconnect(namespace='/ws')
    assert 'WXYZ' not in registry


def test_started_room_survives_everyone_leaving(make_sio_client, registry):
    alice, bob = two_player_game(make_sio_client, registry)
    alice.disconnect(namespace='/ws')
    bob.disconnect(namespace='/ws')
    assert 'ABCD' in registry


def test_penalty_game_over_closes_room(make_sio_client, registry):
    alice, bob = two_player_game(make_sio_client, registry)
    session = registry.get('ABCD')
    session.state.penalties['Alice'] = 3

    alice.emit('rollDice', {}, namespace='/ws')
    alice.emit('endTurn', {'playerName': 'Alice'}, namespace='/ws')
    bob.emit('endTurn', {'playerName': 'Bob'}, namespace='/ws')
    state = last_state(received(bob))
    assert state['gameOver'] is True
    assert state['penalties']['Alice'] == 4
    scores = {record['name']: record['total'] for record in state['scoreboard']}
    assert scores == {'Alice': -20, 'Bob': 0}
    # cleanup timer is disabled in tests but was requested
    assert session.cleanup_scheduled

    for event, data in (
        ('rollDice', {}),
        ('markCell', {'playerName': 'Bob', 'color': 'red', 'number': 8}),
        ('endTurn', {'playerName': 'Bob'}),
    ):
        bob.emit(event, data, namespace='/ws')
        packets = received(bob)
        assert payloads(packets, 'error')[0]['kind'] == 'state'
        assert last_state(packets)['scoreboard'] == state['scoreboard']
    alice.emit('startGame', {'turnOrder': ['Alice', 'Bob']}, namespace='/ws')
    assert payloads(received(alice), 'error')[0]['kind'] == 'state'


def test_replaced_connection_stops_receiving_state(make_sio_client):
    old = make_sio_client()
    join(old, 'Alice')
    new = make_sio_client()
    join(new, 'Alice')
    received(old)
    received(new)

    bob = make_sio_client()
    join(bob, 'Bob')
    assert payloads(received(old), 'gameState') == []
    assert [p['name'] for p in last_state(received(new))['players']] == ['Alice', 'Bob']


def test_reused_code_does_not_reach_old_room_clients(flask_app, make_sio_client, registry):
    alice = make_sio_client()
    bob = make_sio_client()
    join(alice, 'Alice', code='WXYZ')
    join(bob, 'Bob', code='WXYZ')
    alice.emit('startGame', {'turnOrder': ['Alice', 'Bob']}, namespace='/ws')
    received(alice)
    received(bob)
    assert cleanup_room(flask_app, registry.get('WXYZ'))

    cara = make_sio_client()
    join(cara, 'Cara', code='WXYZ')
    assert payloads(received(cara), 'newGameCreated') == [{'roomCode': 'WXYZ'}]
    assert payloads(received(alice), 'gameState') == []
