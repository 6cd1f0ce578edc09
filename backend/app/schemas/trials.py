"""Pydantic models shared by the matching pipeline stages."""
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

MatchLabel = Literal["Strong Match", "Possible Match", "Worth Exploring", "Unlikely"]


class PatientProfile(BaseModel):
    condition: str
    age: int = Field(ge=0, le=120)
    location: str = ""
    medications: list[str] = []
    additionalInfo: str = ""

    model_config = {"frozen": True}

    @field_validator("medications", mode="before")
    @classmethod
    def split_medications(cls, value):
        # The search form sends a comma-separated string
        if value is None:
            return []
        if isinstance(value, str):
            return [m.strip() for m in value.split(",") if m.strip()]
        return value


# Trial card fields, before scoring
class TrialRecord(BaseModel):
    nctId: str
    title: str
    summary: str = "No summary available."
    status: str = "UNKNOWN"
    phase: str = "Not specified"
    conditions: list[str] = []
    eligibility: str = "See full listing for eligibility details."
    eligibilityFull: Optional[str] = None
    minimumAge: Optional[str] = None
    maximumAge: Optional[str] = None
    sex: Optional[str] = None
    healthyVolunteers: Optional[str] = None
    ageRange: str = "Not specified"
    locations: list[str] = []
    interventions: list[str] = []
    sponsor: str = "Not specified"
    url: str


class ScoredTrial(TrialRecord):
    matchScore: float = Field(ge=0, le=100)
    matchLabel: Optional[MatchLabel] = None
    matchReason: Optional[str] = None

    model_config = {"frozen": True}


class EligibilityEntry(BaseModel):
    nctId: str
    eligibilityCriteria: Optional[str] = None
    minimumAge: Optional[str] = None
    maximumAge: Optional[str] = None
    sex: Optional[str] = None
    healthyVolunteers: Optional[str] = None
    fetchedAt: datetime
