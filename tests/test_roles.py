"""Tests for role assignment and name propagation."""

import asyncio

from onlinexo.models import Role, SessionRecord, new_session_fields
from onlinexo.roles import assign_role, determine_role, propagate_name
from onlinexo.store import InMemorySessionStore


def fresh_session(store, **fields):
    async def create():
        initial = new_session_fields("alice")
        initial.update(fields)
        return SessionRecord.from_store(await store.create(initial))

    return asyncio.run(create())


def reload(store, record):
    return SessionRecord.from_store(asyncio.run(store.get(record.id)))


def test_creator_is_x():
    store = InMemorySessionStore()
    record = fresh_session(store)
    assert asyncio.run(assign_role(store, record, "alice")) is Role.X


def test_second_identity_claims_o_once_and_rejoins():
    store = InMemorySessionStore()
    record = fresh_session(store)

    assert asyncio.run(assign_role(store, record, "bob")) is Role.O
    record = reload(store, record)
    assert record.player_o == "bob"

    assert asyncio.run(assign_role(store, record, "bob")) is Role.O
    assert asyncio.run(assign_role(store, record, "carol")) is Role.SPECTATOR
    assert reload(store, record).player_o == "bob"


def test_racing_joiners_last_write_wins():
    store = InMemorySessionStore()
    stale = fresh_session(store)

    assert asyncio.run(assign_role(store, stale, "bob")) is Role.O
    # carol loaded the record before bob's claim landed
    assert asyncio.run(assign_role(store, stale, "carol")) is Role.O
    assert reload(store, stale).player_o == "carol"


def test_determine_role_is_pure():
    record = SessionRecord.from_store(dict(new_session_fields("alice"), id="g"))
    assert determine_role(record, "alice") is Role.X
    assert determine_role(record, "bob") is None


def test_name_written_once_and_never_overwritten():
    store = InMemorySessionStore()
    record = fresh_session(store)

    assert asyncio.run(propagate_name(store, record, Role.X, "Alice"))
    record = reload(store, record)
    assert record.player_x_name == "Alice"

    assert not asyncio.run(propagate_name(store, record, Role.X, "Mallory"))
    assert reload(store, record).player_x_name == "Alice"


def test_spectators_and_unnamed_players_do_not_write():
    store = InMemorySessionStore()
    record = fresh_session(store)
    assert not asyncio.run(propagate_name(store, record, Role.SPECTATOR, "Carol"))
    assert not asyncio.run(propagate_name(store, record, Role.O, None))
    assert reload(store, record).player_o_name is None
