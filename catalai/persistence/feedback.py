"""Feedback session store.

FeedbackStore is the read boundary the learning loop consumes.
SQLiteFeedbackStore implements it on an aiosqlite connection opened by
database.init_db() and adds append-only recording and JSONL import.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from pathlib import Path

import aiosqlite
from pydantic import ValidationError as PydanticValidationError

from catalai.errors import ValidationError
from catalai.schemas.classification import ClarifyingExchange
from catalai.schemas.feedback import DateRange, FeedbackSession, FeedbackStatus

logger = logging.getLogger(__name__)


def _iso(moment: datetime) -> str:
    return moment.astimezone(UTC).isoformat(timespec="microseconds")


class FeedbackStore(ABC):
    """Append-only read access to recorded feedback sessions."""

    @abstractmethod
    async def list_sessions(
        self,
        date_range: DateRange | None = None,
        feedback_status: FeedbackStatus = FeedbackStatus.ANY,
    ) -> list[FeedbackSession]:
        """Sessions inside ``date_range`` (inclusive) with the given status."""


class SQLiteFeedbackStore(FeedbackStore):
    """Feedback store backed by SQLite.

    Sessions are immutable once recorded; there is no update or delete.
    """

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def record_session(self, session: FeedbackSession) -> None:
        """Insert a session.

        Raises:
            ValidationError: If a session with the same id was already recorded.
        """
        try:
            await self._db.execute(
                """
                INSERT INTO feedback_sessions
                    (session_id, final_category, final_confidence,
                     user_corrected_category, corrected, attribute_values_json,
                     timestamp, llm_category, llm_confidence, process_description,
                     conversation_json, matrix_version, subject)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session.session_id,
                    session.final_category,
                    session.final_confidence,
                    session.user_corrected_category,
                    int(session.is_corrected),
                    json.dumps(session.attribute_values, sort_keys=True),
                    _iso(session.timestamp),
                    session.llm_category,
                    session.llm_confidence,
                    session.process_description,
                    json.dumps([e.model_dump() for e in session.conversation_history]),
                    session.matrix_version,
                    session.subject,
                ),
            )
        except aiosqlite.IntegrityError:
            raise ValidationError(
                f"Feedback session '{session.session_id}' is already recorded"
            ) from None
        await self._db.commit()
        logger.debug("Recorded feedback session %s", session.session_id)

    async def get_session(self, session_id: str) -> FeedbackSession | None:
        cursor = await self._db.execute(
            "SELECT * FROM feedback_sessions WHERE session_id = ?", (session_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_session(row, [d[0] for d in cursor.description])

    async def list_sessions(
        self,
        date_range: DateRange | None = None,
        feedback_status: FeedbackStatus = FeedbackStatus.ANY,
    ) -> list[FeedbackSession]:
        conditions: list[str] = []
        params: list[object] = []

        if date_range is not None and date_range.start is not None:
            conditions.append("timestamp >= ?")
            params.append(_iso(date_range.start))
        if date_range is not None and date_range.end is not None:
            conditions.append("timestamp <= ?")
            params.append(_iso(date_range.end))
        if feedback_status == FeedbackStatus.CORRECTED:
            conditions.append("corrected = 1")
        elif feedback_status == FeedbackStatus.CONFIRMED:
            conditions.append("corrected = 0")

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        cursor = await self._db.execute(
            f"SELECT * FROM feedback_sessions {where} "  # noqa: S608
            "ORDER BY timestamp, session_id",
            params,
        )
        rows = await cursor.fetchall()
        columns = [d[0] for d in cursor.description]
        return [self._row_to_session(row, columns) for row in rows]

    async def count(self) -> int:
        cursor = await self._db.execute("SELECT COUNT(*) FROM feedback_sessions")
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def import_jsonl(self, path: Path) -> int:
        """Record every session in a JSON-lines file.

        Sessions whose id is already recorded are skipped.

        Returns:
            Number of sessions newly recorded.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValidationError: If a line is not a valid session.
        """
        if not path.exists():
            raise FileNotFoundError(f"Feedback file not found: {path}")

        imported = skipped = 0
        with open(path, encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    session = FeedbackSession.model_validate_json(line)
                except PydanticValidationError as e:
                    raise ValidationError(f"{path}:{line_no}: invalid session: {e}") from e
                if await self.get_session(session.session_id) is not None:
                    skipped += 1
                    continue
                await self.record_session(session)
                imported += 1

        if skipped:
            logger.warning("Skipped %d already-recorded session(s) from %s", skipped, path)
        logger.info("Imported %d feedback session(s) from %s", imported, path)
        return imported

    @staticmethod
    def _row_to_session(row: tuple, columns: list[str]) -> FeedbackSession:
        data = dict(zip(columns, row, strict=True))
        history = [ClarifyingExchange(**e) for e in json.loads(data["conversation_json"])]
        return FeedbackSession(
            session_id=data["session_id"],
            final_category=data["final_category"],
            final_confidence=data["final_confidence"],
            user_corrected_category=data["user_corrected_category"],
            attribute_values=json.loads(data["attribute_values_json"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            llm_category=data["llm_category"],
            llm_confidence=data["llm_confidence"],
            process_description=data["process_description"],
            conversation_history=tuple(history),
            matrix_version=data["matrix_version"],
            subject=data["subject"],
        )
