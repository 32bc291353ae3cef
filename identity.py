"""Who owns a cart: a registered user or a guest browsing session."""
from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class UserIdentity:
    user_id: str


@dataclass(frozen=True)
class GuestIdentity:
    session_id: str


Identity = Union[UserIdentity, GuestIdentity]
