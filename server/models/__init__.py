from .meetings import Meeting
from .translations import Translation
from .users import User

__all__ = [
    "Meeting",
    "Translation",
    "User",
]
