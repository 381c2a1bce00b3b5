"""Tests for the client-side session synchronisation loop."""

import asyncio

import pytest

from onlinexo.identity import IdentityError, IdentityProvider, MemoryStorage
from onlinexo.models import Role
from onlinexo.store import InMemorySessionStore, StoreError
from onlinexo.sync import GameSessionClient, SessionState


def client(store, player_id, name=None):
    data = {"playerId": player_id}
    if name:
        data["playerName"] = name
    return GameSessionClient(store, IdentityProvider(MemoryStorage(data)))


def run(coro):
    return asyncio.run(coro)


def stored(store, session_id):
    return run(store.get(session_id))


def test_full_game_between_two_clients():
    store = InMemorySessionStore()
    alice = client(store, "alice", "Alice")
    bob = client(store, "bob", "Bob")

    assert run(alice.enter()) is SessionState.ACTIVE
    session_id = alice.session_id
    record = stored(store, session_id)
    assert record["turn"] == "X"
    assert record["board"] == [None] * 9
    assert record["player_x"] == "alice"
    assert alice.role is Role.X

    assert run(bob.enter(session_id)) is SessionState.ACTIVE
    assert bob.role is Role.O
    assert stored(store, session_id)["player_o"] == "bob"
    assert stored(store, session_id)["player_o_name"] == "Bob"

    assert run(alice.make_move(4))
    assert stored(store, session_id)["board"][4] == "X"
    assert stored(store, session_id)["turn"] == "O"

    assert not run(bob.make_move(4))
    assert stored(store, session_id)["turn"] == "O"

    assert run(bob.make_move(0))
    assert stored(store, session_id)["turn"] == "X"

    for alice_cell, bob_cell in ((1, 8), (2, 6)):
        assert run(alice.make_move(alice_cell))
        run(bob.make_move(bob_cell))

    # X holds 4, 1, 2 and O holds 0, 8, 6 with X to move: X plays 7 to finish 1-4-7
    assert run(alice.make_move(7))
    final = stored(store, session_id)
    assert final["winner"] == "X"
    assert final["winningCells"] == [1, 4, 7]
    assert final["turn"] is None

    # both clients mirror the pushed record
    assert alice.record.winner == "X"
    assert bob.record.winning_cells == [1, 4, 7]
    assert alice.state is SessionState.TERMINAL
    assert bob.state is SessionState.TERMINAL
    assert bob.status() == "X wins!"


def test_o_wins_on_diagonal():
    store = InMemorySessionStore()
    alice = client(store, "alice", "Alice")
    bob = client(store, "bob", "Bob")
    run(alice.enter())
    run(bob.enter(alice.session_id))

    for x_cell, o_cell in ((1, 0), (2, 4), (3, 8)):
        assert run(alice.make_move(x_cell))
        assert run(bob.make_move(o_cell))

    final = stored(store, alice.session_id)
    assert final["winner"] == "O"
    assert final["winningCells"] == [0, 4, 8]
    assert final["turn"] is None
    assert not run(alice.make_move(5))


def test_third_identity_observes():
    store = InMemorySessionStore()
    alice = client(store, "alice", "Alice")
    bob = client(store, "bob", "Bob")
    carol = client(store, "carol")
    run(alice.enter())
    run(bob.enter(alice.session_id))

    assert run(carol.enter(alice.session_id)) is SessionState.OBSERVING
    assert carol.role is Role.SPECTATOR
    assert not carol.needs_name
    assert carol.status() == "Spectating..."
    assert not run(carol.make_move(0))

    run(alice.make_move(0))
    assert carol.record.board[0] == "X"


def test_rejoining_player_keeps_role():
    store = InMemorySessionStore()
    alice = client(store, "alice")
    bob = client(store, "bob")
    run(alice.enter())
    session_id = alice.session_id
    run(bob.enter(session_id))
    run(bob.leave())
    assert bob.state is SessionState.UNINITIALIZED

    again = client(store, "bob")
    run(again.enter(session_id))
    assert again.role is Role.O
    assert stored(store, session_id)["player_o"] == "bob"


def test_reset_keeps_players_and_names():
    store = InMemorySessionStore()
    alice = client(store, "alice", "Alice")
    bob = client(store, "bob", "Bob")
    run(alice.enter())
    run(bob.enter(alice.session_id))

    assert not run(alice.reset_session())

    for x_cell, o_cell in ((0, 3), (1, 4)):
        run(alice.make_move(x_cell))
        run(bob.make_move(o_cell))
    run(alice.make_move(2))
    assert bob.state is SessionState.TERMINAL

    assert run(bob.reset_session())
    record = stored(store, alice.session_id)
    assert record["board"] == [None] * 9
    assert record["turn"] == "X"
    assert record["winner"] is None
    assert record["winningCells"] == []
    assert record["player_x"] == "alice"
    assert record["player_o"] == "bob"
    assert record["player_x_name"] == "Alice"
    assert record["player_o_name"] == "Bob"
    assert alice.state is SessionState.ACTIVE


def test_start_new_session_switches_context_and_subscription():
    store = InMemorySessionStore()
    alice = client(store, "alice")
    run(alice.enter())
    old_id = alice.session_id

    new_id = run(alice.start_new_session())
    assert new_id and new_id != old_id
    assert alice.session_id == new_id
    assert alice.role is Role.X
    assert store.subscriber_count(old_id) == 0
    assert store.subscriber_count(new_id) == 1

    run(store.update(old_id, {"turn": "O"}))
    assert alice.record.id == new_id
    assert alice.record.turn == "X"


def test_entering_another_session_unsubscribes_previous():
    store = InMemorySessionStore()
    alice = client(store, "alice")
    bob = client(store, "bob")
    run(alice.enter())
    run(bob.enter())
    first = bob.session_id

    run(bob.enter(alice.session_id))
    assert store.subscriber_count(first) == 0
    assert bob.role is Role.O


def test_missing_session_stays_loading():
    store = InMemorySessionStore()
    alice = client(store, "alice")
    assert run(alice.enter("does-not-exist")) is SessionState.LOADING
    assert alice.record is None
    assert alice.status() == "Loading..."
    assert store.subscriber_count("does-not-exist") == 0


def test_malformed_session_stays_loading():
    store = InMemorySessionStore()
    created = run(store.create({"board": "garbage"}))
    alice = client(store, "alice")
    assert run(alice.enter(created["id"])) is SessionState.LOADING


def test_store_outage_aborts_move_without_local_change():
    store = InMemorySessionStore()
    alice = client(store, "alice")
    run(alice.enter())
    store.available = False
    assert not run(alice.make_move(0))
    assert alice.record.board[0] is None
    store.available = True
    assert stored(store, alice.session_id)["board"][0] is None


def test_store_outage_on_entry():
    store = InMemorySessionStore()
    store.available = False
    alice = client(store, "alice")
    assert run(alice.enter()) is SessionState.LOADING
    assert run(alice.start_new_session()) is None


def test_move_uses_fresh_record_not_cache():
    store = InMemorySessionStore()
    alice = client(store, "alice")
    run(alice.enter())
    session_id = alice.session_id
    # another writer changes the record behind the client's back without a push
    run(alice._drop_subscription())
    run(store.update(session_id, {"turn": "O"}))
    assert alice.record.turn == "X"
    assert not run(alice.make_move(0))
    assert stored(store, session_id)["board"][0] is None


def test_malformed_push_is_ignored():
    store = InMemorySessionStore()
    alice = client(store, "alice")
    run(alice.enter())
    run(store.update(alice.session_id, {"board": [None] * 3}))
    assert alice.record.board == [None] * 9


def test_submit_name_updates_empty_slot_only():
    store = InMemorySessionStore()
    alice = client(store, "alice")
    run(alice.enter())
    assert alice.needs_name

    assert not run(alice.submit_name("   "))
    assert alice.needs_name

    assert run(alice.submit_name("  Alice "))
    assert alice.player_name == "Alice"
    assert not alice.needs_name
    assert stored(store, alice.session_id)["player_x_name"] == "Alice"

    assert run(alice.submit_name("Other"))
    assert stored(store, alice.session_id)["player_x_name"] == "Alice"
    assert alice.identity.get_stored_name() == "Other"


def test_status_lines_follow_turns_and_names():
    store = InMemorySessionStore()
    alice = client(store, "alice", "Alice")
    bob = client(store, "bob", "Bob")
    run(alice.enter())
    run(bob.enter(alice.session_id))

    assert alice.status() == "Your turn"
    assert bob.status() == "Alice's turn"
    snapshot = bob.snapshot()
    assert snapshot["role"] == "O"
    assert snapshot["state"] == "active"
    assert snapshot["record"]["player_o"] == "bob"


def test_draw_status():
    store = InMemorySessionStore()
    alice = client(store, "alice", "Alice")
    bob = client(store, "bob", "Bob")
    run(alice.enter())
    run(bob.enter(alice.session_id))

    # X: 0 2 3 7 8, O: 1 4 5 6
    for x_cell, o_cell in ((0, 1), (2, 4), (3, 5), (7, 6)):
        assert run(alice.make_move(x_cell))
        assert run(bob.make_move(o_cell))
    assert run(alice.make_move(8))

    assert alice.record.winner == "Draw"
    assert alice.record.winning_cells == []
    assert alice.status() == "It's a draw!"


def test_identity_failure_blocks_entry():
    class BrokenStorage:
        def get(self, key):
            raise OSError("no storage")

        def set(self, key, value):
            raise OSError("no storage")

    with pytest.raises(IdentityError):
        GameSessionClient(InMemorySessionStore(), IdentityProvider(BrokenStorage()))


class FlakySubscribeStore(InMemorySessionStore):
    def __init__(self):
        super().__init__()
        self.fail_subscribe = False

    async def subscribe(self, session_id, on_update):
        if self.fail_subscribe:
            raise StoreError("subscribe down")
        return await super().subscribe(session_id, on_update)


def test_failed_new_session_keeps_previous_context():
    store = FlakySubscribeStore()
    alice = client(store, "alice")
    run(alice.enter())
    old_id = alice.session_id
    old_state = alice.state

    store.fail_subscribe = True
    assert run(alice.start_new_session()) is None
    assert alice.session_id == old_id
    assert alice.role is Role.X
    assert alice.state is old_state
    assert store.subscriber_count(old_id) == 1

    run(store.update(old_id, {"turn": "O"}))
    assert alice.record.turn == "O"
