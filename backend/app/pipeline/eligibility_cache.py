"""Time-boxed cache of per-trial eligibility detail.

Eligibility text for a trial is effectively static, so the per-study
registry call is skipped while a row is younger than the TTL. Expired rows
are a hard miss; they are never served.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import EligibilityCache as EligibilityCacheRow
from app.pipeline.errors import CACHE_UNAVAILABLE_MESSAGE, ErrorKind, PipelineError
from app.schemas.trials import EligibilityEntry

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(days=7)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they were written as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def dialect_insert(db: Session):
    if db.get_bind().dialect.name == "postgresql":
        return pg_insert
    return sqlite_insert


class EligibilityCache:
    def __init__(self, db: Session, ttl: timedelta = DEFAULT_TTL,
                 clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.ttl = ttl
        self.clock = clock
        # Set once a read or write fails; the fetch path carries on without the cache
        self.error: Optional[PipelineError] = None

    def get(self, nct_id: str) -> Optional[EligibilityEntry]:
        try:
            row = self.db.execute(
                select(EligibilityCacheRow).where(EligibilityCacheRow.nct_id == nct_id)
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.warning(f"Eligibility cache read failed for {nct_id}: {e}")
            self.db.rollback()
            self.error = PipelineError(ErrorKind.CACHE_UNAVAILABLE, CACHE_UNAVAILABLE_MESSAGE)
            return None

        if row is None:
            return None

        fetched_at = as_utc(row.fetched_at)
        if self.clock() - fetched_at > self.ttl:
            logger.debug(f"Eligibility cache entry for {nct_id} expired ({fetched_at.isoformat()})")
            return None

        return EligibilityEntry(
            nctId=row.nct_id,
            eligibilityCriteria=row.eligibility_criteria,
            minimumAge=row.minimum_age,
            maximumAge=row.maximum_age,
            sex=row.sex,
            healthyVolunteers=row.healthy_volunteers,
            fetchedAt=fetched_at,
        )

    def upsert(self, entry: EligibilityEntry) -> bool:
        """Insert or replace the row for ``entry.nctId``. Returns False on store failure."""
        values = {
            "nct_id": entry.nctId,
            "eligibility_criteria": entry.eligibilityCriteria,
            "minimum_age": entry.minimumAge,
            "maximum_age": entry.maximumAge,
            "sex": entry.sex,
            "healthy_volunteers": entry.healthyVolunteers,
            "fetched_at": as_utc(entry.fetchedAt),
        }
        insert = dialect_insert(self.db)
        stmt = insert(EligibilityCacheRow).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["nct_id"],
            set_={
                "eligibility_criteria": stmt.excluded.eligibility_criteria,
                "minimum_age": stmt.excluded.minimum_age,
                "maximum_age": stmt.excluded.maximum_age,
                "sex": stmt.excluded.sex,
                "healthy_volunteers": stmt.excluded.healthy_volunteers,
                "fetched_at": stmt.excluded.fetched_at,
            },
        )
        try:
            self.db.execute(stmt)
            self.db.commit()
        except SQLAlchemyError as e:
            logger.warning(f"Eligibility cache write failed for {entry.nctId}: {e}")
            self.db.rollback()
            self.error = PipelineError(ErrorKind.CACHE_UNAVAILABLE, CACHE_UNAVAILABLE_MESSAGE)
            return False
        return True
