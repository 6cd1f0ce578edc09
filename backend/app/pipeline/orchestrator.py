"""Trial matching pipeline - one entry point for the search form and the chat tool."""
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from app.config import get_settings
from app.pipeline.condition_gate import ConditionGate
from app.pipeline.ct_gov_search import TrialFetcher
from app.pipeline.errors import ErrorKind, PipelineError, VAGUE_CONDITION_MESSAGE
from app.pipeline.llm_scoring import TrialScorer
from app.schemas.trials import PatientProfile, ScoredTrial

logger = logging.getLogger(__name__)


@dataclass
class SearchOutcome:
    profile: PatientProfile
    trials: list[ScoredTrial] = field(default_factory=list)
    count: int = 0
    error: Optional[PipelineError] = None
    # Degraded but successful stages (cache unavailable, trials scored neutrally)
    warnings: list[PipelineError] = field(default_factory=list)

    def warning_messages(self) -> Optional[list[str]]:
        return [w.message for w in self.warnings] or None

    def tool_result(self) -> dict:
        """Shape returned to the chat model by the search_trials tool."""
        if self.error:
            return {"error": self.error.message, "trials": []}
        result = {
            "trials": [t.model_dump(mode="json") for t in self.trials],
            "count": self.count,
            "patientProfile": self.profile.model_dump(mode="json"),
        }
        if self.warnings:
            result["warnings"] = self.warning_messages()
        return result


class TrialSearchPipeline:
    def __init__(self, gate: ConditionGate, fetcher: TrialFetcher, scorer: TrialScorer,
                 max_trials: Optional[int] = None):
        self.gate = gate
        self.fetcher = fetcher
        self.scorer = scorer
        self.max_trials = max_trials or get_settings().max_trials_to_score

    def run(self, profile: PatientProfile, synonyms: Optional[list[str]] = None) -> SearchOutcome:
        # Stage 1: reject vague conditions before any external call
        if self.gate.is_vague(profile.condition):
            logger.info(f"Rejected vague condition: {profile.condition!r}")
            return SearchOutcome(
                profile=profile,
                error=PipelineError(ErrorKind.INPUT_REJECTED, VAGUE_CONDITION_MESSAGE),
            )

        start = time.time()

        # Stage 2: registry search with synonym expansion
        fetched = self.fetcher.fetch(profile.condition, synonyms=synonyms, location=profile.location)
        if fetched.error:
            return SearchOutcome(profile=profile, error=fetched.error)

        trials = fetched.trials[:self.max_trials]
        count = max(fetched.total_found, len(fetched.trials))

        # Stage 3: eligibility scoring
        scored, scoring_error = self.scorer.score_with_report(trials, profile)
        warnings = list(fetched.warnings)
        if scoring_error:
            warnings.append(scoring_error)
        for warning in warnings:
            logger.warning(f"Search for {profile.condition!r} degraded ({warning.kind.value}): {warning.message}")

        logger.info(
            f"Search for {profile.condition!r}: {count} found, {len(scored)} scored "
            f"in {time.time() - start:.1f}s"
        )
        return SearchOutcome(profile=profile, trials=scored, count=count, warnings=warnings)
