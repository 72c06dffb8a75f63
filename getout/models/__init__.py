"""Database model exports."""

from .activity import Activity
from .hexagon import CaptureHistoryEntry, Hexagon
from .leaderboard import LeaderboardCache
from .notification import Notification
from .user import User

__all__ = [
    "Activity",
    "CaptureHistoryEntry",
    "Hexagon",
    "LeaderboardCache",
    "Notification",
    "User",
]
