"""Session store contract and an in-process implementation with change feeds."""

from __future__ import annotations

import abc
import copy
import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

Record = Dict[str, object]
UpdateCallback = Callable[[Record], None]


class StoreError(RuntimeError):
    """The store could not complete a create, read, update or subscribe."""


class SessionNotFoundError(StoreError):
    """No record exists for the requested session id."""


@dataclass(eq=False)
class Subscription:
    """Handle returned by :meth:`SessionStore.subscribe`."""

    session_id: str
    callback: UpdateCallback = field(repr=False)
    subscription_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    active: bool = True


class SessionStore(abc.ABC):
    """Remote data store holding session records and pushing their updates."""

    @abc.abstractmethod
    async def create(self, initial: Record) -> Record:
        """Insert ``initial`` under a freshly assigned ``id`` and return it."""

    @abc.abstractmethod
    async def get(self, session_id: str) -> Optional[Record]:
        """Return the record or ``None`` when it does not exist."""

    @abc.abstractmethod
    async def update(self, session_id: str, fields: Record) -> Record:
        """Merge ``fields`` into the record and return the merged result."""

    @abc.abstractmethod
    async def subscribe(self, session_id: str, on_update: UpdateCallback) -> Subscription:
        ...

    @abc.abstractmethod
    async def unsubscribe(self, subscription: Subscription) -> None:
        ...


class InMemorySessionStore(SessionStore):
    """Passive store: records are plain dicts and writes are never validated.

    Every successful update is pushed to the subscribers of that record as a
    full copy, in subscription order, after the write lock is released.
    """

    def __init__(self) -> None:
        self._records: Dict[str, Record] = {}
        self._subscribers: Dict[str, List[Subscription]] = {}
        self._lock = threading.Lock()
        self.available = True

    def _ensure_available(self) -> None:
        if not self.available:
            raise StoreError("Session store is unavailable")

    async def create(self, initial: Record) -> Record:
        self._ensure_available()
        record = copy.deepcopy(initial)
        with self._lock:
            session_id = str(uuid.uuid4())
            while session_id in self._records:
                session_id = str(uuid.uuid4())
            record["id"] = session_id
            self._records[session_id] = record
            return copy.deepcopy(record)

    async def get(self, session_id: str) -> Optional[Record]:
        self._ensure_available()
        with self._lock:
            record = self._records.get(session_id)
            return copy.deepcopy(record) if record is not None else None

    async def update(self, session_id: str, fields: Record) -> Record:
        self._ensure_available()
        with self._lock:
            record = self._records.get(session_id)
            if record is None:
                raise SessionNotFoundError(f"Session {session_id} not found")
            changes = copy.deepcopy(fields)
            changes.pop("id", None)
            record.update(changes)
            merged = copy.deepcopy(record)
            subscribers = list(self._subscribers.get(session_id, ()))
        self._notify(subscribers, merged)
        return merged

    async def subscribe(self, session_id: str, on_update: UpdateCallback) -> Subscription:
        self._ensure_available()
        subscription = Subscription(session_id=session_id, callback=on_update)
        with self._lock:
            self._subscribers.setdefault(session_id, []).append(subscription)
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscription.active = False
            subscribers = self._subscribers.get(subscription.session_id)
            if subscribers and subscription in subscribers:
                subscribers.remove(subscription)
                if not subscribers:
                    self._subscribers.pop(subscription.session_id, None)

    def subscriber_count(self, session_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(session_id, ()))

    @staticmethod
    def _notify(subscribers: List[Subscription], record: Record) -> None:
        for subscription in subscribers:
            if not subscription.active:
                continue
            try:
                subscription.callback(copy.deepcopy(record))
            except Exception:
                logger.exception(
                    "Update listener %s failed for session %s",
                    subscription.subscription_id,
                    subscription.session_id,
                )
