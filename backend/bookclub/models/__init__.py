from bookclub.models.oauth_state import PendingAuthState
from bookclub.models.session import Session
from bookclub.models.user import User

__all__ = [
    "User",
    "Session",
    "PendingAuthState",
]
