from cfb_pickem import db  # noqa: F401 - imported for model imports

from .game import Game
from .pick import Pick
from .user import User

__all__ = [
    "User",
    "Game",
    "Pick",
]
