"""Shared FastAPI dependencies: rate limiting and pipeline wiring."""
import logging
from datetime import timedelta

from fastapi import Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.config import get_settings
from app.database import get_db
from app.pipeline.condition_gate import ConditionGate
from app.pipeline.ct_gov_search import TrialFetcher, curl_get_json
from app.pipeline.eligibility_cache import EligibilityCache
from app.pipeline.errors import RATE_LIMITED_MESSAGE, ErrorKind, PipelineError
from app.pipeline.llm_client import get_anthropic_client
from app.pipeline.llm_scoring import TrialScorer
from app.pipeline.orchestrator import TrialSearchPipeline
from app.pipeline.rate_limit import RateLimiter, RateLimitResult, get_client_ip
from app.schemas.responses import RateLimitedResponse

logger = logging.getLogger(__name__)


class RateLimitExceeded(Exception):
    def __init__(self, result: RateLimitResult):
        super().__init__(RATE_LIMITED_MESSAGE)
        self.result = result
        self.error = PipelineError(ErrorKind.ADMISSION_DENIED, RATE_LIMITED_MESSAGE)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content=RateLimitedResponse(error=exc.error.message).model_dump(),
        headers=exc.result.headers(),
    )


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def enforce_rate_limit(route: str):
    """Dependency factory: count the request against ``route``'s window or raise 429."""
    def _check(request: Request, limiter: RateLimiter = Depends(get_rate_limiter)) -> RateLimitResult:
        settings = get_settings()
        limit = getattr(settings, f"{route}_rate_limit")
        window_ms = getattr(settings, f"{route}_rate_window_ms")
        client = get_client_ip(request.headers, settings.client_ip_header)
        result = limiter.check(f"{route}:{client}", limit, window_ms)
        if not result.ok:
            raise RateLimitExceeded(result)
        return result

    return _check


def get_registry_client():
    return curl_get_json


def get_llm_client():
    return get_anthropic_client()


def get_trial_fetcher(db: Session = Depends(get_db), http_get=Depends(get_registry_client)) -> TrialFetcher:
    settings = get_settings()
    cache = EligibilityCache(db, ttl=timedelta(days=settings.eligibility_cache_ttl_days))
    return TrialFetcher(cache=cache, http_get=http_get, settings=settings)


def get_pipeline(fetcher: TrialFetcher = Depends(get_trial_fetcher),
                 llm_client=Depends(get_llm_client)) -> TrialSearchPipeline:
    settings = get_settings()
    return TrialSearchPipeline(
        gate=ConditionGate.from_settings(settings),
        fetcher=fetcher,
        scorer=TrialScorer(client=llm_client, settings=settings),
        max_trials=settings.max_trials_to_score,
    )
