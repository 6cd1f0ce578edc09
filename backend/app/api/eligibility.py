"""Per-trial eligibility breakdown API."""
from fastapi import APIRouter, Depends, Path

from app.api.deps import get_llm_client, get_trial_fetcher
from app.config import get_settings
from app.pipeline.ct_gov_search import TrialFetcher
from app.pipeline.eligibility_breakdown import EligibilityBreakdownBuilder
from app.schemas.requests import EligibilityProfile
from app.schemas.responses import EligibilityBreakdownResponse

router = APIRouter(prefix="/api/trials", tags=["eligibility"])


@router.post("/{nct_id}/eligibility", response_model=EligibilityBreakdownResponse)
def get_eligibility_breakdown(
    profile: EligibilityProfile,
    nct_id: str = Path(pattern=r"^NCT\d{8}$"),
    fetcher: TrialFetcher = Depends(get_trial_fetcher),
    llm_client=Depends(get_llm_client),
):
    builder = EligibilityBreakdownBuilder(fetcher, client=llm_client, model=get_settings().anthropic_model)
    return builder.build(nct_id, profile)
