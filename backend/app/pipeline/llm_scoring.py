"""
LLM-based eligibility scoring of trials against a patient profile.
Uses Claude to score batches of trials; cheap age checks run first and
trials whose scoring fails get a neutral score instead of being dropped.
"""
import json
import logging
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

from app.config import get_settings
from app.pipeline.age import normalize_age_bounds
from app.pipeline.errors import SCORING_FAILED_MESSAGE, ErrorKind, PipelineError
from app.pipeline.llm_client import get_anthropic_client, parse_json_content, response_text
from app.schemas.trials import PatientProfile, ScoredTrial, TrialRecord

logger = logging.getLogger(__name__)

NEUTRAL_SCORE = 50
AGE_MISMATCH_SCORE = 10
UNAVAILABLE_REASON = (
    "Automatic scoring was unavailable for this trial; the research team can "
    "confirm whether you may be eligible."
)

SCORING_PROMPT = """You are a clinical trial eligibility analyst. You will receive a patient profile and a list of clinical trials. For each trial, determine how well the patient matches.

SCORING RULES:
1. AGE: Compare ageMinYears/ageMaxYears (or the ageRange text) against the patient's age. If the patient's age is outside the range, the trial is "Unlikely" with no exceptions.
2. CONDITION: Check if the patient's condition matches the trial's conditions. Consider synonyms (e.g. "sickle cell disease" = "SCD").
3. ELIGIBILITY CRITERIA: Read the eligibilityFull text. Look for exclusions that apply to the patient (specific prior treatments, excluded medications, sex restrictions, etc).
4. MEDICATIONS: If the patient is on medications, check if the trial excludes those medications or requires failure/intolerance of them (which could be a positive signal).
5. LOCATION: Prefer trials with sites near the patient's location when one is given.

LABELS:
- "Strong Match" (score 80-100): Age fits, condition matches, no disqualifiers found.
- "Possible Match" (score 50-79): Age fits, condition matches, but some criteria are uncertain.
- "Worth Exploring" (score 30-49): Condition is related, age fits, but significant uncertainty about eligibility.
- "Unlikely" (score 0-29): Age is outside range, or a clear disqualifier exists.

MATCH REASON: One short plain-English sentence a patient or caregiver would understand, referencing the specific reason.

Return a score for EVERY trial provided. Do not skip any.
Return ONLY valid JSON of the form {"scores": [{"nctId": "...", "matchScore": 0-100, "matchLabel": "...", "matchReason": "..."}]}, no other text."""


class TrialScore(BaseModel):
    nctId: str
    matchScore: float = Field(ge=0, le=100)
    matchLabel: Optional[str] = None
    matchReason: str = ""


def label_for_score(score: float) -> str:
    if score >= 80:
        return "Strong Match"
    if score >= 50:
        return "Possible Match"
    if score >= 30:
        return "Worth Exploring"
    return "Unlikely"


def format_years(value: float) -> str:
    return f"{value:g}"


def age_precheck(trial: TrialRecord, profile: PatientProfile) -> Optional[ScoredTrial]:
    """Score a trial without the LLM when the patient's age is out of range."""
    bounds = normalize_age_bounds(trial.minimumAge, trial.maximumAge)
    if bounds.min_years is not None and profile.age < bounds.min_years:
        reason = f"Age {profile.age} is below the minimum of {format_years(bounds.min_years)}."
    elif bounds.max_years is not None and profile.age > bounds.max_years:
        reason = f"Age {profile.age} is above the maximum of {format_years(bounds.max_years)}."
    else:
        return None
    return ScoredTrial(
        **trial.model_dump(),
        matchScore=AGE_MISMATCH_SCORE,
        matchLabel="Unlikely",
        matchReason=reason,
    )


def neutral_score(trial: TrialRecord) -> ScoredTrial:
    return ScoredTrial(**trial.model_dump(), matchScore=NEUTRAL_SCORE, matchReason=UNAVAILABLE_REASON)


def parse_scores(content: str) -> dict[str, TrialScore]:
    """Parse the model reply; malformed entries are skipped, not fatal."""
    payload = parse_json_content(content)
    if isinstance(payload, dict):
        if "scores" not in payload:
            raise ValueError("scoring reply has no scores key")
        entries = payload["scores"]
    else:
        entries = payload
    if not isinstance(entries, list):
        raise ValueError("scoring reply has no scores array")

    scores = {}
    for entry in entries:
        try:
            score = TrialScore.model_validate(entry)
        except ValidationError as e:
            logger.warning(f"    Discarding malformed score entry: {e.errors()[:1]}")
            continue
        scores[score.nctId] = score
    return scores


def scoring_input(trial: TrialRecord) -> dict[str, Any]:
    bounds = normalize_age_bounds(trial.minimumAge, trial.maximumAge)
    return {
        "nctId": trial.nctId,
        "title": trial.title,
        "ageRange": trial.ageRange,
        "ageMinYears": bounds.min_years,
        "ageMaxYears": bounds.max_years,
        "sex": trial.sex,
        "healthyVolunteers": trial.healthyVolunteers,
        "conditions": trial.conditions,
        "eligibilityFull": trial.eligibilityFull or trial.eligibility,
        "interventions": trial.interventions,
        "locations": trial.locations,
        "phase": trial.phase,
    }


class TrialScorer:
    def __init__(self, client=None, settings=None, batch_size: Optional[int] = None):
        settings = settings or get_settings()
        self.client = client if client is not None else get_anthropic_client(settings)
        self.model = settings.anthropic_model
        self.batch_size = batch_size or settings.scoring_batch_size

    def call_model(self, batch: list[TrialRecord], profile: PatientProfile,
                   temperature: float) -> dict[str, TrialScore]:
        prompt = (
            f"Patient profile:\n{json.dumps(profile.model_dump(), indent=2)}\n\n"
            f"Trials to score:\n{json.dumps([scoring_input(t) for t in batch], indent=2)}"
        )
        response = self.client.messages.create(
            model=self.model,
            max_tokens=300 * len(batch) + 200,
            temperature=temperature,
            system=SCORING_PROMPT,
            messages=[{"role": "user", "content": prompt}],
        )
        return parse_scores(response_text(response))

    def score_batch(self, batch: list[TrialRecord], profile: PatientProfile) -> Optional[dict[str, TrialScore]]:
        """One call plus one warmer retry; None if both fail."""
        for temperature in (0.0, 0.3):
            try:
                return self.call_model(batch, profile, temperature)
            except Exception as e:
                ids = ", ".join(t.nctId for t in batch)
                logger.warning(f"    Scoring failed for [{ids}] at temperature {temperature}: {e}")
        return None

    def score(self, trials: list[TrialRecord], profile: PatientProfile) -> list[ScoredTrial]:
        """Score every trial; the output has one entry per input, in input order."""
        return self.score_with_report(trials, profile)[0]

    def score_with_report(
        self, trials: list[TrialRecord], profile: PatientProfile,
    ) -> tuple[list[ScoredTrial], Optional[PipelineError]]:
        """Like score(), plus a SCORING_FAILED error when any trial fell back to neutral."""
        if not trials:
            return [], None

        scored: dict[int, ScoredTrial] = {}
        pending: list[tuple[int, TrialRecord]] = []
        for i, trial in enumerate(trials):
            prechecked = age_precheck(trial, profile)
            if prechecked is not None:
                scored[i] = prechecked
            else:
                pending.append((i, trial))

        if pending and self.client is None:
            logger.warning("No ANTHROPIC_API_KEY set. Using neutral scores.")
            pending = []

        for start in range(0, len(pending), self.batch_size):
            batch = pending[start:start + self.batch_size]
            results = self.score_batch([t for _, t in batch], profile)

            if results is None and len(batch) > 1:
                # Isolate the failing trial(s) by scoring one at a time
                results = {}
                for _, trial in batch:
                    single = self.score_batch([trial], profile)
                    if single:
                        results.update(single)

            for i, trial in batch:
                score = (results or {}).get(trial.nctId)
                if score is None:
                    continue
                label = label_for_score(score.matchScore)
                if score.matchLabel and score.matchLabel != label:
                    logger.debug(f"    {trial.nctId}: label {score.matchLabel} -> {label} for score {score.matchScore}")
                scored[i] = ScoredTrial(
                    **trial.model_dump(),
                    matchScore=score.matchScore,
                    matchLabel=label,
                    matchReason=score.matchReason or None,
                )

        missing = [i for i in range(len(trials)) if i not in scored]
        error = None
        if missing:
            logger.info(f"  {len(missing)} of {len(trials)} trials fell back to a neutral score")
            error = PipelineError(
                ErrorKind.SCORING_FAILED,
                SCORING_FAILED_MESSAGE.format(failed=len(missing), total=len(trials)),
            )
        results = [scored[i] if i in scored else neutral_score(trials[i]) for i in range(len(trials))]
        return results, error
