"""Deciding who plays X, who plays O and who only watches a session."""

from __future__ import annotations

import logging
from typing import Optional

from .models import Role, SessionRecord
from .store import SessionStore

logger = logging.getLogger(__name__)


def determine_role(record: SessionRecord, player_id: str) -> Optional[Role]:
    """Role implied by the record alone; ``None`` means the O slot is free to claim."""
    if player_id == record.player_x:
        return Role.X
    if not record.player_o:
        return None
    if player_id == record.player_o:
        return Role.O
    return Role.SPECTATOR


async def assign_role(store: SessionStore, record: SessionRecord, player_id: str) -> Role:
    """Resolve the local role, claiming the O slot when it is still empty.

    The claim is a plain read-then-write: two joiners racing on the same
    record can both see the slot empty, and the later write wins.
    """
    role = determine_role(record, player_id)
    if role is not None:
        return role

    await store.update(record.id, {"player_o": player_id})
    logger.info("Player %s claimed slot O in session %s", player_id, record.id)
    return Role.O


async def propagate_name(
    store: SessionStore, record: SessionRecord, role: Role, name: Optional[str]
) -> bool:
    """Write ``name`` into the role's name slot unless it is already set."""
    if not name or not role.is_player:
        return False
    if role is Role.X:
        if record.player_x_name:
            return False
        await store.update(record.id, {"player_x_name": name})
    else:
        if record.player_o_name:
            return False
        await store.update(record.id, {"player_o_name": name})
    logger.info("Set %s name in session %s", role.value, record.id)
    return True
