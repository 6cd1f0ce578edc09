"""Error kinds returned by pipeline stages.

Stages return a PipelineError value instead of raising; the HTTP layer turns
it into a status code (admission denied) or an in-band ``error`` string.
"""
from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    ADMISSION_DENIED = "admission_denied"
    INPUT_REJECTED = "input_rejected"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    SCORING_FAILED = "scoring_failed"
    CACHE_UNAVAILABLE = "cache_unavailable"


@dataclass(frozen=True)
class PipelineError:
    kind: ErrorKind
    message: str

    def __str__(self) -> str:
        return self.message


class UpstreamError(RuntimeError):
    """Raised by registry helpers; converted to UPSTREAM_UNAVAILABLE by callers."""

    def __init__(self, message: str, status: int | None = None, timed_out: bool = False):
        super().__init__(message)
        self.status = status
        self.timed_out = timed_out


RATE_LIMITED_MESSAGE = "Rate limit reached. Please try again shortly."
VAGUE_CONDITION_MESSAGE = (
    "Please describe the condition in more detail, for example the specific "
    "type, subtype or stage, so we can find relevant trials."
)
TIMEOUT_MESSAGE = "The search timed out. ClinicalTrials.gov may be slow, please try again."
UNREACHABLE_MESSAGE = "Unable to reach ClinicalTrials.gov. Please try again later."
CACHE_UNAVAILABLE_MESSAGE = "Eligibility cache unavailable; details were fetched from ClinicalTrials.gov."
SCORING_FAILED_MESSAGE = "{failed} of {total} trials could not be scored automatically."
