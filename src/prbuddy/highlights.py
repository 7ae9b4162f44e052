from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
import logging
from pathlib import Path
import sqlite3
import threading
from typing import Literal, cast
from uuid import uuid4

from prbuddy.observability import log_event


LOGGER = logging.getLogger("prbuddy.highlights")

ArtifactType = Literal[
    "github_pr", "slack_message", "jira_ticket", "document", "demo", "meeting", "other"
]
ARTIFACT_TYPES: tuple[ArtifactType, ...] = (
    "github_pr",
    "slack_message",
    "jira_ticket",
    "document",
    "demo",
    "meeting",
    "other",
)
RECENT_HIGHLIGHT_LIMIT = 5


@dataclass(frozen=True)
class CompanyValue:
    id: str
    title: str
    description: str


DEFAULT_COMPANY_VALUES: tuple[tuple[str, str], ...] = (
    (
        "Be All for One",
        "Prioritize team success over individual achievement and collaborate across boundaries.",
    ),
    (
        "Take Extreme Ownership",
        "Own outcomes completely, take responsibility without excuses, and follow through on commitments.",
    ),
    (
        "Be Customer Obsessed",
        "Deeply understand customer needs and make every decision through the lens of customer value.",
    ),
    (
        "Speak and Act Courageously",
        "Voice opinions constructively, challenge the status quo, and take bold action despite uncertainty.",
    ),
    (
        "Move with Focus and Urgency",
        "Execute with speed and prioritize ruthlessly to drive initiatives to completion.",
    ),
    (
        "Learn Voraciously",
        "Embrace continuous learning, seek feedback actively, and adapt quickly to new information.",
    ),
)


@dataclass(frozen=True)
class HighlightInput:
    user_id: str
    title: str
    artifact_type: str
    artifact_url: str
    achieved_at: datetime
    value_ids: tuple[str, ...]
    description: str | None = None


@dataclass(frozen=True)
class HighlightRecord:
    id: str
    user_id: str
    title: str
    description: str | None
    artifact_type: str
    artifact_url: str
    achieved_at: datetime
    created_at: datetime
    updated_at: datetime
    value_titles: tuple[str, ...]


@dataclass(frozen=True)
class HighlightSummary:
    user_id: str
    total_highlights: int
    by_value: tuple[tuple[str, int], ...]
    by_artifact_type: tuple[tuple[str, int], ...]
    recent: tuple[HighlightRecord, ...]


class HighlightError(ValueError):
    pass


class UnknownValueError(HighlightError):
    def __init__(self, missing_ids: Sequence[str]) -> None:
        self.missing_ids = tuple(missing_ids)
        super().__init__(f"Invalid company value IDs: {', '.join(self.missing_ids)}")


class HighlightStore:
    """SQLite storage for performance highlights and the company values they cite."""

    def __init__(self, db_path: Path) -> None:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db_path = db_path
        self._lock = threading.Lock()
        self._init_schema()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path)
        conn.execute("PRAGMA foreign_keys=ON;")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS company_values (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL UNIQUE,
                    description TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS highlights (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT,
                    artifact_type TEXT NOT NULL,
                    artifact_url TEXT NOT NULL,
                    achieved_at TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS highlight_values (
                    highlight_id TEXT NOT NULL REFERENCES highlights(id) ON DELETE CASCADE,
                    value_id TEXT NOT NULL REFERENCES company_values(id) ON DELETE CASCADE,
                    PRIMARY KEY (highlight_id, value_id)
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_highlights_user_achieved
                ON highlights(user_id, achieved_at)
                """
            )

    def seed_values(self, values: Iterable[tuple[str, str]] = DEFAULT_COMPANY_VALUES) -> int:
        """Insert or refresh company values by title; returns how many were written."""
        count = 0
        with self._lock, self._connect() as conn:
            for title, description in values:
                conn.execute(
                    """
                    INSERT INTO company_values(id, title, description)
                    VALUES(?, ?, ?)
                    ON CONFLICT(title) DO UPDATE SET description=excluded.description
                    """,
                    (uuid4().hex, title, description),
                )
                count += 1
        log_event(LOGGER, "company_values_seeded", count=count)
        return count

    def list_values(self) -> list[CompanyValue]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                "SELECT id, title, description FROM company_values ORDER BY title ASC"
            ).fetchall()
        return [
            CompanyValue(id=str(value_id), title=str(title), description=str(description))
            for value_id, title, description in rows
        ]

    def create_highlight(self, data: HighlightInput) -> HighlightRecord:
        if data.artifact_type not in ARTIFACT_TYPES:
            raise HighlightError(
                f"artifact_type must be one of: {', '.join(ARTIFACT_TYPES)}"
            )
        if not data.value_ids:
            raise HighlightError("At least one company value ID is required")
        if not data.title.strip():
            raise HighlightError("title must be non-empty")

        value_ids = tuple(dict.fromkeys(data.value_ids))
        highlight_id = uuid4().hex
        now = _to_storage(datetime.now(timezone.utc))
        with self._lock, self._connect() as conn:
            placeholders = ", ".join("?" for _ in value_ids)
            found = {
                str(row[0])
                for row in conn.execute(
                    f"SELECT id FROM company_values WHERE id IN ({placeholders})", value_ids
                ).fetchall()
            }
            missing = [value_id for value_id in value_ids if value_id not in found]
            if missing:
                raise UnknownValueError(missing)

            conn.execute(
                """
                INSERT INTO highlights(
                    id,
                    user_id,
                    title,
                    description,
                    artifact_type,
                    artifact_url,
                    achieved_at,
                    created_at,
                    updated_at
                )
                VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    highlight_id,
                    data.user_id,
                    data.title,
                    data.description,
                    data.artifact_type,
                    data.artifact_url,
                    _to_storage(data.achieved_at),
                    now,
                    now,
                ),
            )
            conn.executemany(
                "INSERT INTO highlight_values(highlight_id, value_id) VALUES(?, ?)",
                [(highlight_id, value_id) for value_id in value_ids],
            )
            record = self._load_records(conn, [highlight_id])[0]
        log_event(
            LOGGER,
            "highlight_created",
            highlight_id=highlight_id,
            user_id=data.user_id,
            artifact_type=data.artifact_type,
            value_count=len(value_ids),
        )
        return record

    def list_highlights(
        self,
        user_id: str,
        *,
        start_date: date | datetime | None = None,
        end_date: date | datetime | None = None,
        value_title: str | None = None,
        artifact_type: str | None = None,
    ) -> list[HighlightRecord]:
        clauses = ["h.user_id = ?"]
        params: list[object] = [user_id]
        clauses_for_range, range_params = _range_clauses(start_date, end_date)
        clauses.extend(clauses_for_range)
        params.extend(range_params)
        if artifact_type is not None:
            clauses.append("h.artifact_type = ?")
            params.append(artifact_type)
        if value_title is not None:
            clauses.append(
                """
                EXISTS (
                    SELECT 1
                    FROM highlight_values hv
                    JOIN company_values cv ON cv.id = hv.value_id
                    WHERE hv.highlight_id = h.id AND instr(cv.title, ?) > 0
                )
                """
            )
            params.append(value_title)

        with self._lock, self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT h.id
                FROM highlights h
                WHERE {" AND ".join(clauses)}
                ORDER BY h.achieved_at DESC, h.created_at DESC
                """,
                params,
            ).fetchall()
            return self._load_records(conn, [str(row[0]) for row in rows])

    def summarize(
        self,
        user_id: str,
        *,
        start_date: date | datetime | None = None,
        end_date: date | datetime | None = None,
    ) -> HighlightSummary:
        records = self.list_highlights(user_id, start_date=start_date, end_date=end_date)
        by_value: Counter[str] = Counter()
        by_type: Counter[str] = Counter()
        for record in records:
            by_value.update(record.value_titles)
            by_type[record.artifact_type] += 1
        return HighlightSummary(
            user_id=user_id,
            total_highlights=len(records),
            by_value=tuple(by_value.most_common()),
            by_artifact_type=tuple(by_type.most_common()),
            recent=tuple(records[:RECENT_HIGHLIGHT_LIMIT]),
        )

    def _load_records(
        self, conn: sqlite3.Connection, highlight_ids: list[str]
    ) -> list[HighlightRecord]:
        if not highlight_ids:
            return []
        placeholders = ", ".join("?" for _ in highlight_ids)
        value_rows = conn.execute(
            f"""
            SELECT hv.highlight_id, cv.title
            FROM highlight_values hv
            JOIN company_values cv ON cv.id = hv.value_id
            WHERE hv.highlight_id IN ({placeholders})
            ORDER BY cv.title ASC
            """,
            highlight_ids,
        ).fetchall()
        titles: dict[str, list[str]] = {}
        for highlight_id, title in value_rows:
            titles.setdefault(str(highlight_id), []).append(str(title))

        rows = conn.execute(
            f"""
            SELECT
                id,
                user_id,
                title,
                description,
                artifact_type,
                artifact_url,
                achieved_at,
                created_at,
                updated_at
            FROM highlights
            WHERE id IN ({placeholders})
            """,
            highlight_ids,
        ).fetchall()
        by_id = {str(row[0]): row for row in rows}
        records: list[HighlightRecord] = []
        for highlight_id in highlight_ids:
            row = by_id[highlight_id]
            (
                _,
                row_user_id,
                title,
                description,
                artifact_type,
                artifact_url,
                achieved_at,
                created_at,
                updated_at,
            ) = row
            records.append(
                HighlightRecord(
                    id=highlight_id,
                    user_id=str(row_user_id),
                    title=str(title),
                    description=cast(str | None, description),
                    artifact_type=str(artifact_type),
                    artifact_url=str(artifact_url),
                    achieved_at=datetime.fromisoformat(str(achieved_at)),
                    created_at=datetime.fromisoformat(str(created_at)),
                    updated_at=datetime.fromisoformat(str(updated_at)),
                    value_titles=tuple(titles.get(highlight_id, ())),
                )
            )
        return records


def parse_achieved_at(value: str) -> datetime:
    """Parse an ISO date or timestamp; date-only and naive values are UTC."""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise HighlightError(f"Invalid date: {value!r}") from exc
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def _range_clauses(
    start_date: date | datetime | None, end_date: date | datetime | None
) -> tuple[list[str], list[object]]:
    clauses: list[str] = []
    params: list[object] = []
    if start_date is not None:
        clauses.append("h.achieved_at >= ?")
        params.append(_to_storage(_as_datetime(start_date)))
    if end_date is not None:
        if isinstance(end_date, datetime):
            clauses.append("h.achieved_at <= ?")
            params.append(_to_storage(end_date))
        else:
            # A bare end date covers that whole day.
            clauses.append("h.achieved_at < ?")
            params.append(_to_storage(_as_datetime(end_date + timedelta(days=1))))
    return clauses, params


def _as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _to_storage(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="seconds")
