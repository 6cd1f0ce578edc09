"""
Plain-English eligibility breakdown for one trial.
Eligibility text comes cache-first from the eligibility cache; Claude sorts each
criterion into met / not_met / unknown against the patient profile.
"""
import json
import logging
import re
from typing import Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from app.pipeline.ct_gov_search import TrialFetcher
from app.pipeline.llm_client import parse_json_content, response_text
from app.schemas.requests import EligibilityProfile
from app.schemas.responses import EligibilityBreakdownResponse, EligibilityMetaResponse
from app.schemas.trials import EligibilityEntry

logger = logging.getLogger(__name__)

MAX_CONTEXT_CHARS = 8000
TRIMMED_CONTEXT_CHARS = 7500

REQUIRED_DISCLAIMER = (
    "This breakdown helps you understand what the trial requires. Only the trial's "
    "research team can confirm eligibility after formal screening."
)

ELIGIBILITY_SYSTEM_PROMPT = """You translate clinical trial eligibility criteria into plain English.
You do NOT determine eligibility. You classify each criterion as:
- "met" only if the patient profile explicitly satisfies it.
- "not_met" only if the patient profile explicitly contradicts it.
- "unknown" for anything else.
Be conservative: when unsure, use "unknown".
Use plain English suitable for a 16-year-old.
If you use medical terms, add a short parenthetical explanation.
Return only valid JSON matching the provided schema. No extra text."""

USER_PROMPT = """Trial ID: {nct_id}

Patient profile:
{profile_json}

Eligibility criteria (raw):
{eligibility}

Task:
1) Separate inclusion vs exclusion criteria.
2) For each criterion, provide: original, plainEnglish, status ("met" | "not_met" | "unknown"), reason.
3) Generate a "preparationChecklist" derived from all "unknown" items.
4) Use the disclaimer exactly:
"{disclaimer}"

Return JSON only, with top-level keys: trialId, disclaimer, inclusionCriteria, exclusionCriteria, preparationChecklist, meta."""

_INCLUSION = re.compile(r"^\s*inclusion\s*criteria:?\s*$", re.IGNORECASE | re.MULTILINE)
_EXCLUSION = re.compile(r"^\s*exclusion\s*criteria:?\s*$", re.IGNORECASE | re.MULTILINE)


class Criterion(BaseModel):
    original: str
    plainEnglish: str = ""
    status: str = "unknown"
    reason: str = ""

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, value):
        lower = re.sub(r"\s+", "_", str(value or "").strip().lower())
        if lower == "met":
            return "met"
        if lower in ("not_met", "notmet"):
            return "not_met"
        return "unknown"


class Meta(BaseModel):
    source: str = "clinicaltrials.gov"
    criteriaPresent: bool = True
    notes: Optional[str] = ""


class Breakdown(BaseModel):
    trialId: str = ""
    disclaimer: str = REQUIRED_DISCLAIMER
    inclusionCriteria: list[Criterion] = Field(default_factory=list)
    exclusionCriteria: list[Criterion] = Field(default_factory=list)
    preparationChecklist: list[str] = Field(default_factory=list)
    meta: Meta = Field(default_factory=Meta)


def split_sections(raw: str) -> tuple[str, str, str]:
    """Split criteria text into (inclusion, exclusion, unclassified)."""
    text = re.sub(r"\n{3,}", "\n\n", raw.replace("\r\n", "\n")).strip()
    inc = _INCLUSION.search(text)
    exc = _EXCLUSION.search(text)

    if inc and exc:
        if inc.start() < exc.start():
            return text[inc.end():exc.start()].strip(), text[exc.end():].strip(), ""
        return text[inc.end():].strip(), text[exc.end():inc.start()].strip(), ""
    if inc:
        return text[inc.end():].strip(), "", ""
    if exc:
        return "", text[exc.end():].strip(), ""
    return "", "", text


def build_context(entry: EligibilityEntry) -> str:
    inclusion, exclusion, unclassified = split_sections(entry.eligibilityCriteria or "")
    context = ""
    if inclusion:
        context += f"Inclusion Criteria:\n{inclusion}\n\n"
    if exclusion:
        context += f"Exclusion Criteria:\n{exclusion}\n\n"
    if unclassified:
        context += f"Criteria:\n{unclassified}\n\n"
    if entry.minimumAge:
        context += f"Minimum Age: {entry.minimumAge}\n"
    if entry.maximumAge:
        context += f"Maximum Age: {entry.maximumAge}\n"
    if entry.sex:
        context += f"Sex: {entry.sex}\n"
    if entry.healthyVolunteers:
        context += f"Healthy Volunteers: {entry.healthyVolunteers}\n"

    if len(context) > MAX_CONTEXT_CHARS:
        context = (
            context[:TRIMMED_CONTEXT_CHARS]
            + "\n\n[Criteria text was trimmed for processing. Some criteria may be missing.]"
        )
    return context


def fallback_breakdown(nct_id: str, raw_criteria: Optional[str]) -> EligibilityBreakdownResponse:
    inclusion = []
    if raw_criteria:
        inclusion.append({
            "original": raw_criteria,
            "plainEnglish": "We couldn't process these criteria automatically. Here's the "
                            "original text from ClinicalTrials.gov.",
            "status": "unknown",
            "reason": "Automatic processing was unavailable.",
        })
    return EligibilityBreakdownResponse(
        trialId=nct_id,
        disclaimer=REQUIRED_DISCLAIMER,
        inclusionCriteria=inclusion,
        exclusionCriteria=[],
        preparationChecklist=[
            "Contact the research team directly to discuss eligibility requirements.",
            "Bring a list of your current medications and medical history.",
        ],
        meta=EligibilityMetaResponse(
            source="clinicaltrials.gov",
            criteriaPresent=bool(raw_criteria),
            notes="Automated breakdown was unavailable. Raw criteria shown instead.",
        ),
    )


class EligibilityBreakdownBuilder:
    def __init__(self, fetcher: TrialFetcher, client=None, model: str = ""):
        self.fetcher = fetcher
        self.client = client
        self.model = model

    def raw_eligibility(self, nct_id: str) -> Optional[EligibilityEntry]:
        resolved = self.fetcher.resolve_eligibility([nct_id])
        return resolved.get(nct_id)

    def call_model(self, nct_id: str, profile_json: str, context: str, retry: bool) -> Breakdown:
        messages = [{"role": "user", "content": USER_PROMPT.format(
            nct_id=nct_id, profile_json=profile_json, eligibility=context,
            disclaimer=REQUIRED_DISCLAIMER,
        )}]
        if retry:
            messages += [
                {"role": "assistant", "content": "I'll fix the JSON to match the exact schema required."},
                {"role": "user", "content": (
                    "Your previous response did not match the required schema. Return valid JSON "
                    "with keys trialId, disclaimer, inclusionCriteria, exclusionCriteria, "
                    "preparationChecklist, meta. Each criterion must have original, plainEnglish, "
                    "status (\"met\"|\"not_met\"|\"unknown\"), reason. Return JSON only."
                )},
            ]
        response = self.client.messages.create(
            model=self.model,
            max_tokens=4000,
            temperature=0.1 if retry else 0.0,
            system=ELIGIBILITY_SYSTEM_PROMPT,
            messages=messages,
        )
        return Breakdown.model_validate(parse_json_content(response_text(response)))

    def build(self, nct_id: str, profile: EligibilityProfile) -> EligibilityBreakdownResponse:
        entry = self.raw_eligibility(nct_id)

        if entry is None or not entry.eligibilityCriteria:
            logger.info(f"No criteria found for {nct_id}, returning fallback")
            return fallback_breakdown(nct_id, None)
        if self.client is None:
            return fallback_breakdown(nct_id, entry.eligibilityCriteria)

        profile_json = json.dumps({
            "age": profile.age,
            "sex": profile.sex or "not specified",
            "location": profile.location or "not specified",
            "condition": profile.condition,
            "medications": profile.medications,
            "additionalInfo": profile.additionalInfo or "",
        }, indent=2)
        context = build_context(entry)

        result = None
        for retry in (False, True):
            try:
                result = self.call_model(nct_id, profile_json, context, retry)
                break
            except (ValidationError, ValueError) as e:
                logger.info(f"Breakdown for {nct_id} failed validation (retry={retry}): {e}")
            except Exception as e:
                logger.warning(f"Breakdown LLM call failed for {nct_id}: {e}")
                break

        if result is None:
            return fallback_breakdown(nct_id, entry.eligibilityCriteria)

        logger.info(
            f"Breakdown for {nct_id}: {len(result.inclusionCriteria)} inclusion, "
            f"{len(result.exclusionCriteria)} exclusion, {len(result.preparationChecklist)} checklist"
        )
        return EligibilityBreakdownResponse(
            trialId=result.trialId or nct_id,
            disclaimer=result.disclaimer or REQUIRED_DISCLAIMER,
            inclusionCriteria=[c.model_dump() for c in result.inclusionCriteria],
            exclusionCriteria=[c.model_dump() for c in result.exclusionCriteria],
            preparationChecklist=result.preparationChecklist,
            meta=EligibilityMetaResponse(
                source=result.meta.source or "clinicaltrials.gov",
                criteriaPresent=result.meta.criteriaPresent,
                notes=result.meta.notes or "",
            ),
        )
