"""Client-side synchronisation of one shared session record.

Each participant runs a :class:`GameSessionClient` against the same store.
There is no server-side referee: every client validates its own moves
against a freshly read copy of the record and then writes, and every client
mirrors whatever full record the store pushes last.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Dict, Optional

from .game import DRAW, apply_move
from .identity import IdentityProvider, default_identity
from .models import (
    MalformedRecordError,
    Role,
    SessionRecord,
    new_session_fields,
    reset_fields,
)
from .roles import assign_role, propagate_name
from .store import Record, SessionNotFoundError, SessionStore, StoreError, Subscription

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    ACTIVE = "active"
    OBSERVING = "observing"
    TERMINAL = "terminal"


class GameSessionClient:
    """One participant's view of a session plus the actions it may take."""

    def __init__(self, store: SessionStore, identity: Optional[IdentityProvider] = None) -> None:
        self.store = store
        self.identity = identity or default_identity()
        # Raises IdentityError when storage is unusable; nothing works without an id.
        self.player_id = self.identity.get_or_create_identity()
        self.player_name = self.identity.get_stored_name()
        self.record: Optional[SessionRecord] = None
        self.role: Optional[Role] = None
        self.state = SessionState.UNINITIALIZED
        self._subscription: Optional[Subscription] = None
        self._move_lock = asyncio.Lock()

    # ---- entry / exit ----

    @property
    def session_id(self) -> Optional[str]:
        return self.record.id if self.record else None

    async def enter(self, session_id: Optional[str] = None) -> SessionState:
        """Create a session (no id) or load and join an existing one."""
        await self._drop_subscription()
        self.record = None
        self.role = None
        self.state = SessionState.LOADING

        try:
            if session_id is None:
                await self._create_and_switch()
            else:
                await self._join(session_id)
        except (StoreError, MalformedRecordError) as exc:
            if isinstance(exc, MalformedRecordError):
                logger.warning("Session %s is malformed: %s", session_id, exc)
            else:
                logger.error("Unable to enter session %s: %s", session_id or "<new>", exc)
            await self._drop_subscription()
            self.record = None
            self.role = None
        return self.state

    async def leave(self) -> None:
        await self._drop_subscription()
        self.record = None
        self.role = None
        self.state = SessionState.UNINITIALIZED

    async def _join(self, session_id: str) -> None:
        self._subscription = await self.store.subscribe(session_id, self._on_remote_update)

        data = await self.store.get(session_id)
        if data is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        record = SessionRecord.from_store(data)
        self.record = record

        role = await assign_role(self.store, record, self.player_id)
        if role is Role.O and not self.record.player_o:
            # claim not echoed back by the store
            self.record = self.record.model_copy(update={"player_o": self.player_id})
        self.role = role
        logger.info("Joined session %s as %s", session_id, role.value)

        await propagate_name(self.store, self.record, role, self.player_name)
        self._settle_state()

    async def _create_and_switch(self) -> None:
        data = await self.store.create(new_session_fields(self.player_id, self.player_name))
        record = SessionRecord.from_store(data)
        # the previous context stays untouched until the new feed is live
        subscription = await self.store.subscribe(record.id, self._on_remote_update)
        await self._drop_subscription()
        self._subscription = subscription
        self.record = record
        self.role = Role.X
        self._settle_state()
        logger.info("Created session %s", record.id)

    # ---- actions ----

    async def make_move(self, cell_index: int) -> bool:
        """Play ``cell_index`` for the local symbol; illegal moves are silent no-ops."""
        if self.record is None or self.role is None or not self.role.is_player:
            return False

        async with self._move_lock:
            session_id = self.record.id
            try:
                data = await self.store.get(session_id)
            except StoreError as exc:
                logger.error("Reload before move failed for session %s: %s", session_id, exc)
                return False
            if data is None:
                logger.error("Session %s vanished before move", session_id)
                return False
            try:
                fresh = SessionRecord.from_store(data)
            except MalformedRecordError as exc:
                logger.warning("Ignoring malformed session %s: %s", session_id, exc)
                return False

            result = apply_move(
                fresh.board,
                cell_index,
                self.role.symbol,
                turn=fresh.turn,
                winner=fresh.winner,
            )
            if not result.accepted:
                logger.debug(
                    "Rejected move %s by %s in session %s", cell_index, self.role.value, session_id
                )
                return False

            try:
                await self.store.update(session_id, result.to_update())
            except StoreError as exc:
                logger.error("Move write failed for session %s: %s", session_id, exc)
                return False
            return True

    async def reset_session(self) -> bool:
        """Clear the board in place once the game has ended."""
        if self.record is None or self.role is None or not self.role.is_player:
            return False
        if not self.record.is_terminal:
            return False
        try:
            await self.store.update(self.record.id, reset_fields())
        except StoreError as exc:
            logger.error("Reset failed for session %s: %s", self.record.id, exc)
            return False
        logger.info("Reset session %s", self.record.id)
        return True

    async def start_new_session(self) -> Optional[str]:
        """Open a fresh session with the local player as X and switch to it."""
        previous = self.session_id
        try:
            await self._create_and_switch()
        except (StoreError, MalformedRecordError) as exc:
            logger.error("Unable to start a new session: %s", exc)
            return None
        logger.info("Moved from session %s to %s", previous, self.session_id)
        return self.session_id

    async def submit_name(self, name: str) -> bool:
        stored = self.identity.set_name(name)
        if stored is None:
            return False
        self.player_name = stored

        if self.record is None or self.role is None:
            return True
        session_id = self.record.id
        try:
            data = await self.store.get(session_id)
            if data is None:
                logger.error("Session %s vanished before naming", session_id)
                return True
            await propagate_name(self.store, SessionRecord.from_store(data), self.role, stored)
        except StoreError as exc:
            logger.error("Name update failed for session %s: %s", session_id, exc)
        except MalformedRecordError as exc:
            logger.warning("Ignoring malformed session %s: %s", session_id, exc)
        return True

    # ---- remote state ----

    def _on_remote_update(self, data: Record) -> None:
        try:
            record = SessionRecord.from_store(data)
        except MalformedRecordError as exc:
            logger.warning("Dropping malformed update: %s", exc)
            return
        if self._subscription is None or record.id != self._subscription.session_id:
            return
        self.record = record
        if self.role is not None:
            self._settle_state()

    def _settle_state(self) -> None:
        if self.record is not None and self.record.is_terminal:
            self.state = SessionState.TERMINAL
        elif self.role is Role.SPECTATOR:
            self.state = SessionState.OBSERVING
        else:
            self.state = SessionState.ACTIVE

    async def _drop_subscription(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is None:
            return
        try:
            await self.store.unsubscribe(subscription)
        except StoreError as exc:
            logger.error("Unsubscribe from session %s failed: %s", subscription.session_id, exc)

    # ---- presentation ----

    @property
    def needs_name(self) -> bool:
        return self.role is not None and self.role.is_player and not self.player_name

    def status(self) -> str:
        record = self.record
        if record is None or self.role is None:
            return "Loading..."
        if record.winner == DRAW:
            return "It's a draw!"
        if record.winner:
            return f"{record.winner} wins!"
        if self.role is Role.SPECTATOR:
            return "Spectating..."
        if record.turn == self.role.symbol:
            return "Your turn"
        return f"{record.name_for(record.turn)}'s turn"

    def snapshot(self) -> Dict[str, object]:
        return {
            "record": self.record.to_store() if self.record else None,
            "role": self.role.value if self.role else None,
            "state": self.state.value,
            "playerId": self.player_id,
            "playerName": self.player_name,
            "needsName": self.needs_name,
            "status": self.status(),
        }
