"""
Contest Scoreboard - live scoring and ranking for prediction contests.

This package provides:
- Lenient CSV parsing and accuracy scoring against per-task answer keys
- A submission ledger that serializes concurrent attempts per team and task
- Full re-ranking with solve-time tie-breaks after every change
- HTTP API and WebSocket feed for the live scoreboard
"""

from .config import ContestConfig
from .database import DatabaseManager
from .publisher import ScoreboardPublisher
from .service import ContestService
from .scoreboard import ScoreboardSystem

__version__ = "1.0.0"
__author__ = "Contest Scoreboard Contributors"

__all__ = [
    "ContestConfig",
    "DatabaseManager",
    "ScoreboardPublisher",
    "ContestService",
    "ScoreboardSystem",
]
