"""Pydantic request schemas for the public API."""
from typing import Any, Optional

from pydantic import BaseModel, Field

from app.schemas.trials import PatientProfile


class SearchRequest(PatientProfile):
    pass


# Input schema of the search_trials tool the chat model calls
class SearchTrialsToolInput(BaseModel):
    condition: str = Field(description="Primary medical condition or disease to search for")
    age: int = Field(ge=0, le=120, description="Patient age in years")
    location: str = Field("", description="City, state, or country to filter trials by location")
    synonyms: Optional[list[str]] = Field(
        None, description="Medical synonyms for the condition (e.g. NSCLC for lung cancer)"
    )
    medications: Optional[list[str]] = Field(
        None, description="Current medications the patient is taking"
    )
    additionalInfo: Optional[str] = Field(
        None, description="Any additional patient details relevant to trial matching"
    )

    def to_profile(self) -> PatientProfile:
        return PatientProfile(
            condition=self.condition,
            age=self.age,
            location=self.location or "",
            medications=self.medications or [],
            additionalInfo=self.additionalInfo or "",
        )


class ChatMessage(BaseModel):
    role: str
    content: Any


class ChatRequest(BaseModel):
    messages: list[ChatMessage] = Field(min_length=1)


class EligibilityProfile(BaseModel):
    age: int = Field(ge=0, le=120)
    condition: str
    sex: Optional[str] = None
    location: Optional[str] = None
    medications: list[str] = []
    additionalInfo: Optional[str] = None
