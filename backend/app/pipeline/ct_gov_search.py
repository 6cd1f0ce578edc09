"""
ClinicalTrials.gov search for a patient's condition.
Queries recruiting studies for the condition and each synonym, merges the hits,
then resolves per-trial eligibility detail through the eligibility cache.
Uses subprocess curl because CT.gov blocks Python HTTP libraries (httpx/requests).
"""
import json
import logging
import subprocess
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Optional

from app.config import get_settings
from app.pipeline.age import format_age_range
from app.pipeline.eligibility_cache import EligibilityCache, utcnow
from app.pipeline.errors import (
    ErrorKind, PipelineError, UpstreamError, TIMEOUT_MESSAGE, UNREACHABLE_MESSAGE,
)
from app.schemas.trials import EligibilityEntry, TrialRecord

logger = logging.getLogger(__name__)

STUDY_URL = "https://clinicaltrials.gov/study/{nct_id}"
CARD_ELIGIBILITY_CHARS = 500
SCORING_ELIGIBILITY_CHARS = 1500
MAX_LOCATIONS = 3
DETAIL_WORKERS = 4

# The list search leaves out the eligibility module; it comes from the cache
LIST_FIELDS = ",".join([
    "protocolSection.identificationModule",
    "protocolSection.statusModule",
    "protocolSection.descriptionModule",
    "protocolSection.designModule",
    "protocolSection.conditionsModule",
    "protocolSection.contactsLocationsModule",
    "protocolSection.armsInterventionsModule",
    "protocolSection.sponsorCollaboratorsModule",
])
DETAIL_FIELDS = "protocolSection.identificationModule,protocolSection.eligibilityModule"

CURL_TIMEOUT_EXIT_CODE = 28


def map_phase(phases: list[str] | None) -> str:
    if not phases:
        return "Not specified"
    phase_map = {
        "EARLY_PHASE1": "Early Phase 1", "PHASE1": "Phase 1",
        "PHASE2": "Phase 2", "PHASE3": "Phase 3", "PHASE4": "Phase 4",
        "NA": "Not Applicable",
    }
    return ", ".join(phase_map.get(p, p) for p in phases)


def map_status(status: str) -> str:
    status_map = {
        "RECRUITING": "Recruiting",
        "ACTIVE_NOT_RECRUITING": "Active",
        "COMPLETED": "Completed",
        "TERMINATED": "Terminated",
        "WITHDRAWN": "Withdrawn",
        "SUSPENDED": "Suspended",
        "NOT_YET_RECRUITING": "Not Yet Recruiting",
        "ENROLLING_BY_INVITATION": "Enrolling by Invitation",
        "UNKNOWN": "Unknown",
    }
    return status_map.get(status, status)


def truncate(text: str, limit: int) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def sanitize_synonyms(condition: str, synonyms: list[str] | None, limit: int = 8) -> list[str]:
    """Trim synonyms, drop empties and repeats of the condition, cap the list."""
    seen = {(condition or "").strip().lower()}
    cleaned = []
    for synonym in synonyms or []:
        term = (synonym or "").strip()
        if not term or term.lower() in seen:
            continue
        seen.add(term.lower())
        cleaned.append(term)
        if len(cleaned) >= limit:
            break
    return cleaned


def curl_get_json(url: str, params: dict[str, str], timeout: int = 15) -> dict:
    """GET via subprocess curl with --data-urlencode; raises UpstreamError on any failure."""
    cmd = ["curl", "-s", "--max-time", str(timeout), "-G", "-w", "\n%{http_code}"]
    for key, value in params.items():
        cmd.extend(["--data-urlencode", f"{key}={value}"])
    cmd.append(url)

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout + 5)
    except subprocess.TimeoutExpired:
        raise UpstreamError(f"curl timed out after {timeout}s", timed_out=True)
    except OSError as e:
        raise UpstreamError(f"curl could not be started: {e}")

    if result.returncode == CURL_TIMEOUT_EXIT_CODE:
        raise UpstreamError(f"curl timed out after {timeout}s", timed_out=True)
    if result.returncode != 0:
        raise UpstreamError(f"curl failed with code {result.returncode}: {result.stderr[:200]}")

    body, _, status_line = result.stdout.rpartition("\n")
    try:
        status = int(status_line.strip())
    except ValueError:
        raise UpstreamError("curl returned no HTTP status")
    if status < 200 or status >= 300:
        raise UpstreamError(f"ClinicalTrials.gov returned status {status}", status=status)

    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        raise UpstreamError(f"ClinicalTrials.gov returned malformed JSON: {e}")
    if not isinstance(data, dict):
        raise UpstreamError("ClinicalTrials.gov returned an unexpected payload")
    return data


def parse_study(study: dict) -> Optional[dict]:
    """Parse a CT.gov API v2 study into TrialRecord fields. Returns None for unusable records."""
    proto = study.get("protocolSection") if isinstance(study, dict) else None
    if not proto:
        return None
    ident = proto.get("identificationModule", {})
    status_mod = proto.get("statusModule", {})
    desc = proto.get("descriptionModule", {})
    design = proto.get("designModule", {})
    cond_mod = proto.get("conditionsModule", {})
    contacts = proto.get("contactsLocationsModule", {})
    arms = proto.get("armsInterventionsModule", {})
    sponsor_mod = proto.get("sponsorCollaboratorsModule", {})

    nct_id = ident.get("nctId", "")
    title = ident.get("briefTitle", "")
    if not nct_id or not title:
        return None

    locations = []
    for loc in contacts.get("locations", []):
        parts = [loc.get("facility"), loc.get("city"), loc.get("state"), loc.get("country")]
        label = ", ".join(p for p in parts if p)
        if label:
            locations.append(label)

    interventions = []
    for interv in arms.get("interventions", []):
        name = interv.get("name")
        if name:
            interv_type = interv.get("type")
            interventions.append(f"{interv_type}: {name}" if interv_type else name)

    return {
        "nctId": nct_id,
        "title": title,
        "summary": desc.get("briefSummary") or "No summary available.",
        "status": map_status(status_mod.get("overallStatus", "UNKNOWN")),
        "phase": map_phase(design.get("phases")),
        "conditions": cond_mod.get("conditions", []),
        "locations": locations[:MAX_LOCATIONS],
        "interventions": interventions,
        "sponsor": sponsor_mod.get("leadSponsor", {}).get("name") or "Not specified",
        "url": STUDY_URL.format(nct_id=nct_id),
    }


def parse_eligibility(study: dict, nct_id: str) -> EligibilityEntry:
    elig = study.get("protocolSection", {}).get("eligibilityModule", {}) or {}

    def as_text(value):
        if value is None:
            return None
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    return EligibilityEntry(
        nctId=nct_id,
        eligibilityCriteria=elig.get("eligibilityCriteria"),
        minimumAge=as_text(elig.get("minimumAge")),
        maximumAge=as_text(elig.get("maximumAge")),
        sex=as_text(elig.get("sex")),
        healthyVolunteers=as_text(elig.get("healthyVolunteers")),
        fetchedAt=utcnow(),
    )


def build_trial(fields: dict, eligibility: Optional[EligibilityEntry]) -> TrialRecord:
    criteria = eligibility.eligibilityCriteria if eligibility else None
    minimum_age = eligibility.minimumAge if eligibility else None
    maximum_age = eligibility.maximumAge if eligibility else None
    return TrialRecord(
        **fields,
        eligibility=truncate(criteria, CARD_ELIGIBILITY_CHARS) if criteria
        else "See full listing for eligibility details.",
        eligibilityFull=truncate(criteria, SCORING_ELIGIBILITY_CHARS) if criteria else None,
        minimumAge=minimum_age,
        maximumAge=maximum_age,
        sex=eligibility.sex if eligibility else None,
        healthyVolunteers=eligibility.healthyVolunteers if eligibility else None,
        ageRange=format_age_range(minimum_age, maximum_age),
    )


@dataclass
class FetchResult:
    trials: list[TrialRecord] = field(default_factory=list)
    total_found: int = 0
    error: Optional[PipelineError] = None
    warnings: list[PipelineError] = field(default_factory=list)


def upstream_error(e: UpstreamError) -> PipelineError:
    message = TIMEOUT_MESSAGE if e.timed_out else UNREACHABLE_MESSAGE
    if e.status is not None:
        message = f"ClinicalTrials.gov returned status {e.status}"
    return PipelineError(ErrorKind.UPSTREAM_UNAVAILABLE, message)


class TrialFetcher:
    def __init__(
        self,
        cache: Optional[EligibilityCache] = None,
        http_get: Callable[..., dict] = curl_get_json,
        settings=None,
        max_results: Optional[int] = None,
    ):
        settings = settings or get_settings()
        self.cache = cache
        self.http_get = http_get
        self.base_url = settings.ct_gov_base_url.rstrip("/")
        self.timeout = settings.ct_gov_timeout_seconds
        self.page_size = settings.ct_gov_page_size
        self.max_synonyms = settings.max_synonyms
        self.max_results = max_results if max_results is not None else settings.max_trials_to_score

    def search_term(self, term: str, location: Optional[str]) -> list[dict]:
        params = {
            "query.cond": term,
            "filter.overallStatus": "RECRUITING",
            "pageSize": str(self.page_size),
            "fields": LIST_FIELDS,
            "format": "json",
        }
        if location:
            params["query.locn"] = location
        data = self.http_get(f"{self.base_url}/studies", params, timeout=self.timeout)
        studies = data.get("studies", [])
        if not isinstance(studies, list):
            raise UpstreamError("ClinicalTrials.gov returned an unexpected payload")
        return studies

    def fetch_eligibility(self, nct_id: str) -> EligibilityEntry:
        """Fetch one trial's eligibility module from the per-study endpoint."""
        data = self.http_get(
            f"{self.base_url}/studies/{nct_id}",
            {"format": "json", "fields": DETAIL_FIELDS},
            timeout=self.timeout,
        )
        return parse_eligibility(data, nct_id)

    def resolve_eligibility(self, nct_ids: list[str]) -> dict[str, EligibilityEntry]:
        """Cache-first eligibility lookup; misses are fetched and upserted."""
        resolved = {}
        misses = []
        for nct_id in nct_ids:
            cached = self.cache.get(nct_id) if self.cache else None
            if cached:
                resolved[nct_id] = cached
            else:
                misses.append(nct_id)

        if not misses:
            return resolved
        logger.info(f"Eligibility cache: {len(resolved)} hits, {len(misses)} misses")

        def fetch_one(nct_id):
            try:
                return nct_id, self.fetch_eligibility(nct_id)
            except UpstreamError as e:
                logger.warning(f"Eligibility fetch failed for {nct_id}: {e}")
                return nct_id, None

        with ThreadPoolExecutor(max_workers=min(DETAIL_WORKERS, len(misses))) as pool:
            fetched = list(pool.map(fetch_one, misses))

        # Database work stays on the calling thread
        for nct_id, entry in fetched:
            if entry is None:
                continue
            resolved[nct_id] = entry
            if self.cache:
                self.cache.upsert(entry)
        return resolved

    def fetch(self, condition: str, synonyms: list[str] | None = None,
              location: Optional[str] = None) -> FetchResult:
        terms = [condition.strip()] + sanitize_synonyms(condition, synonyms, self.max_synonyms)
        location = (location or "").strip() or None

        merged: dict[str, dict] = {}
        failures = []
        for i, term in enumerate(terms):
            try:
                studies = self.search_term(term, location)
            except UpstreamError as e:
                logger.warning(f"Registry query failed for '{term}': {e}")
                failures.append(e)
                continue
            except Exception as e:
                logger.error(f"Unexpected registry failure for '{term}': {e}")
                failures.append(UpstreamError(str(e)))
                continue

            new = 0
            for study in studies:
                fields = parse_study(study)
                if fields and fields["nctId"] not in merged:
                    merged[fields["nctId"]] = fields
                    new += 1
            logger.info(f"  Query {i + 1}/{len(terms)} '{term}': {len(studies)} studies, {new} new")

        if failures and len(failures) == len(terms):
            return FetchResult(trials=[], total_found=0, error=upstream_error(failures[0]))

        candidates = list(merged.values())
        total_found = len(candidates)
        if total_found > self.max_results:
            logger.info(f"Truncating {total_found} trials to {self.max_results}")
            candidates = candidates[:self.max_results]

        eligibility = self.resolve_eligibility([c["nctId"] for c in candidates])
        trials = [build_trial(c, eligibility.get(c["nctId"])) for c in candidates]
        warnings = [self.cache.error] if self.cache and self.cache.error else []
        return FetchResult(trials=trials, total_found=total_found, warnings=warnings)
