"""OnlineXO package exposing the game rules, session sync client and store service."""

from .api import app
from .game import apply_move, check_winner
from .identity import IdentityProvider
from .models import Role, SessionRecord
from .remote import HttpSessionStore
from .store import InMemorySessionStore, SessionStore
from .sync import GameSessionClient, SessionState

__all__ = [
    "GameSessionClient",
    "HttpSessionStore",
    "IdentityProvider",
    "InMemorySessionStore",
    "Role",
    "SessionRecord",
    "SessionState",
    "SessionStore",
    "app",
    "apply_move",
    "check_winner",
]
