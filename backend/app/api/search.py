"""Form-based trial search and saved-search retrieval."""
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.deps import enforce_rate_limit, get_pipeline
from app.database import get_db
from app.pipeline.orchestrator import SearchOutcome, TrialSearchPipeline
from app.pipeline.persistence import SearchPersistence
from app.schemas.requests import SearchRequest
from app.schemas.responses import SearchRecordResponse, SearchResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["search"])


def save_outcome(db: Session, outcome: SearchOutcome, mode: str, search_id: str | None = None) -> str:
    profile = outcome.profile
    return SearchPersistence(db).save(
        mode=mode,
        condition=profile.condition,
        age=profile.age,
        location=profile.location,
        results=outcome.trials,
        medications=list(profile.medications),
        additional_info=profile.additionalInfo or None,
        search_id=search_id,
    )


@router.post(
    "/search", response_model=SearchResponse, response_model_exclude_none=True,
    dependencies=[Depends(enforce_rate_limit("search"))],
)
def search_trials(
    body: SearchRequest,
    pipeline: TrialSearchPipeline = Depends(get_pipeline),
    db: Session = Depends(get_db),
):
    outcome = pipeline.run(body)
    if outcome.error:
        # Upstream and input errors are reported in-band with HTTP 200
        return SearchResponse(trials=[], count=0, error=outcome.error.message)

    search_id = None
    try:
        search_id = save_outcome(db, outcome, mode="form")
    except SQLAlchemyError as e:
        logger.error(f"Failed to save search for {body.condition!r}: {e}")

    return SearchResponse(
        trials=outcome.trials, count=outcome.count,
        warnings=outcome.warning_messages(), searchId=search_id,
    )


@router.get("/searches/{search_id}", response_model=SearchRecordResponse)
def get_saved_search(search_id: str, db: Session = Depends(get_db)):
    record = SearchPersistence(db).load(search_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Search not found")
    return SearchRecordResponse(
        id=record.id,
        createdAt=record.created_at.isoformat(),
        mode=record.mode,
        condition=record.condition,
        age=record.age,
        location=record.location,
        medications=record.medications,
        additionalInfo=record.additional_info,
        results=record.results,
    )
