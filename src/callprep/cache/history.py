"""
Brief history store.

Records every generated brief with its campaign and researched prospect
emails so later requests can reuse a fresh brief instead of paying for new
research. SQLiteBriefHistory persists to .cache/briefs.db; InMemoryBriefHistory
is for tests and embedding.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Protocol, Sequence, runtime_checkable

import aiosqlite
import orjson

from callprep.logging import get_logger
from callprep.types import OrchestrationResult, generate_id, utc_now
from callprep.utils.domains import normalize_email

logger = get_logger(__name__)


class BriefStatus(str, Enum):
    """Lifecycle status of a stored brief."""

    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class BriefRecord:
    """A brief as stored in history."""

    brief_id: str
    campaign_id: str
    prospect_emails: tuple[str, ...]
    status: BriefStatus
    created_at: datetime
    confidence_rating: str | None = None
    payload: dict[str, Any] | None = None


def email_key(emails: Sequence[str]) -> tuple[str, ...]:
    """Sorted, normalized email tuple used to match briefs."""
    return tuple(sorted(normalize_email(e) for e in emails))


def _timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


@runtime_checkable
class BriefHistory(Protocol):
    """Read/write access to generated briefs."""

    async def find_ready_briefs(self, campaign_id: str, since: datetime) -> list[BriefRecord]:
        """Ready briefs for a campaign created at or after ``since``, newest first."""
        ...

    async def record_brief(
        self,
        campaign_id: str,
        prospect_emails: Sequence[str],
        result: OrchestrationResult | None = None,
        status: BriefStatus = BriefStatus.READY,
        created_at: datetime | None = None,
    ) -> BriefRecord:
        """Store a brief and return its record."""
        ...


def _build_record(
    campaign_id: str,
    prospect_emails: Sequence[str],
    result: OrchestrationResult | None,
    status: BriefStatus,
    created_at: datetime | None,
) -> BriefRecord:
    return BriefRecord(
        brief_id=generate_id("brief"),
        campaign_id=campaign_id,
        prospect_emails=email_key(prospect_emails),
        status=status,
        created_at=created_at or utc_now(),
        confidence_rating=result.brief.confidence_rating.value if result else None,
        payload=result.to_dict() if result else None,
    )


class InMemoryBriefHistory:
    """Brief history kept in a list."""

    def __init__(self) -> None:
        self._records: list[BriefRecord] = []

    @property
    def records(self) -> tuple[BriefRecord, ...]:
        return tuple(self._records)

    async def find_ready_briefs(self, campaign_id: str, since: datetime) -> list[BriefRecord]:
        matches = [
            r
            for r in self._records
            if r.campaign_id == campaign_id
            and r.status == BriefStatus.READY
            and r.created_at >= since
        ]
        return sorted(matches, key=lambda r: r.created_at, reverse=True)

    async def record_brief(
        self,
        campaign_id: str,
        prospect_emails: Sequence[str],
        result: OrchestrationResult | None = None,
        status: BriefStatus = BriefStatus.READY,
        created_at: datetime | None = None,
    ) -> BriefRecord:
        record = _build_record(campaign_id, prospect_emails, result, status, created_at)
        self._records.append(record)
        return record


class SQLiteBriefHistory:
    """Brief history persisted with aiosqlite."""

    def __init__(self, db_path: str | Path) -> None:
        """Initialize the history store.

        Args:
            db_path: Path of the SQLite database file.
        """
        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None

    async def init(self) -> None:
        """Open the database and create the schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS briefs (
                brief_id TEXT PRIMARY KEY,
                campaign_id TEXT NOT NULL,
                prospect_emails TEXT NOT NULL,
                status TEXT NOT NULL,
                confidence_rating TEXT,
                payload TEXT,
                created_at TEXT NOT NULL
            )
        """)
        await self._db.execute(
            "CREATE INDEX IF NOT EXISTS idx_briefs_campaign ON briefs(campaign_id, created_at)"
        )
        await self._db.commit()
        logger.info("Brief history initialized", db_path=str(self.db_path))

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    def _require_db(self) -> aiosqlite.Connection:
        if not self._db:
            raise RuntimeError("SQLiteBriefHistory not initialized. Call init() first.")
        return self._db

    async def find_ready_briefs(self, campaign_id: str, since: datetime) -> list[BriefRecord]:
        db = self._require_db()
        cursor = await db.execute(
            """
            SELECT * FROM briefs
            WHERE campaign_id = ? AND status = ? AND created_at >= ?
            ORDER BY created_at DESC
            """,
            (campaign_id, BriefStatus.READY.value, _timestamp(since)),
        )
        rows = await cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    async def record_brief(
        self,
        campaign_id: str,
        prospect_emails: Sequence[str],
        result: OrchestrationResult | None = None,
        status: BriefStatus = BriefStatus.READY,
        created_at: datetime | None = None,
    ) -> BriefRecord:
        db = self._require_db()
        record = _build_record(campaign_id, prospect_emails, result, status, created_at)

        await db.execute(
            """
            INSERT INTO briefs (
                brief_id, campaign_id, prospect_emails, status,
                confidence_rating, payload, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.brief_id,
                record.campaign_id,
                orjson.dumps(list(record.prospect_emails)).decode(),
                record.status.value,
                record.confidence_rating,
                orjson.dumps(record.payload).decode() if record.payload else None,
                _timestamp(record.created_at),
            ),
        )
        await db.commit()

        logger.debug(
            "Recorded brief",
            brief_id=record.brief_id,
            campaign_id=campaign_id,
            prospects=len(record.prospect_emails),
        )
        return record

    def _row_to_record(self, row: aiosqlite.Row) -> BriefRecord:
        return BriefRecord(
            brief_id=row["brief_id"],
            campaign_id=row["campaign_id"],
            prospect_emails=tuple(orjson.loads(row["prospect_emails"])),
            status=BriefStatus(row["status"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            confidence_rating=row["confidence_rating"],
            payload=orjson.loads(row["payload"]) if row["payload"] else None,
        )
