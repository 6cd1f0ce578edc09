"""Write-once storage of completed searches for share links."""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import Search
from app.schemas.trials import ScoredTrial

logger = logging.getLogger(__name__)

SearchMode = Literal["chat", "form"]


@dataclass(frozen=True)
class SearchRecord:
    id: str
    created_at: datetime
    mode: SearchMode
    condition: str
    age: int
    location: str
    medications: Optional[list[str]]
    additional_info: Optional[str]
    results: list[ScoredTrial]


def new_search_id() -> str:
    return uuid.uuid4().hex


class SearchPersistence:
    def __init__(self, db: Session):
        self.db = db

    def save(
        self,
        mode: SearchMode,
        condition: str,
        age: int,
        location: str,
        results: list[ScoredTrial],
        medications: Optional[list[str]] = None,
        additional_info: Optional[str] = None,
        search_id: Optional[str] = None,
    ) -> str:
        search_id = search_id or new_search_id()
        row = Search(
            id=search_id,
            mode=mode,
            condition=condition,
            age=age,
            location=location or "",
            medications=list(medications) if medications is not None else None,
            additional_info=additional_info,
            results=[t.model_dump(mode="json") for t in results],
            created_at=datetime.now(timezone.utc),
        )
        self.db.add(row)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(f"Saved {mode} search {search_id} ({len(results)} trials)")
        return search_id

    def load(self, search_id: str) -> Optional[SearchRecord]:
        if not search_id or len(search_id) > 32:
            return None
        row = self.db.execute(select(Search).where(Search.id == search_id)).scalar_one_or_none()
        if row is None:
            return None
        created_at = row.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return SearchRecord(
            id=row.id,
            created_at=created_at,
            mode=row.mode,
            condition=row.condition,
            age=row.age,
            location=row.location,
            medications=row.medications,
            additional_info=row.additional_info,
            results=[ScoredTrial.model_validate(r) for r in row.results],
        )
