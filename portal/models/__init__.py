"""Portal database models."""

from portal.models.account import Account
from portal.models.chat_history import ChatHistory
from portal.models.session import Session
from portal.models.user import User

__all__ = [
    "User",
    "Account",
    "Session",
    "ChatHistory",
]
