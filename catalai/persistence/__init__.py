"""catalai feedback persistence layer.

Provides SQLite-backed storage for feedback sessions, the sole input to
the learning loop.
"""

from catalai.persistence.database import close_db, init_db
from catalai.persistence.feedback import FeedbackStore, SQLiteFeedbackStore

__all__ = [
    "FeedbackStore",
    "SQLiteFeedbackStore",
    "close_db",
    "init_db",
]
