"""Pydantic response schemas matching the frontend TypeScript interfaces."""
from pydantic import BaseModel
from typing import Any, Literal, Optional

from app.schemas.trials import ScoredTrial


# Body of POST /api/search
class SearchResponse(BaseModel):
    trials: list[ScoredTrial]
    count: int
    error: Optional[str] = None
    warnings: Optional[list[str]] = None
    searchId: Optional[str] = None


class RateLimitedResponse(BaseModel):
    trials: list[ScoredTrial] = []
    error: str


# GET /api/searches/{search_id}, the share-link payload
class SearchRecordResponse(BaseModel):
    id: str
    createdAt: str
    mode: Literal["chat", "form"]
    condition: str
    age: int
    location: str
    medications: Optional[list[str]] = None
    additionalInfo: Optional[str] = None
    results: list[ScoredTrial]


class ChatResponse(BaseModel):
    reply: str
    toolResults: list[dict[str, Any]]
    searchId: Optional[str] = None


# Eligibility breakdown panel
class CriterionResponse(BaseModel):
    original: str
    plainEnglish: str
    status: Literal["met", "not_met", "unknown"]
    reason: str


class EligibilityMetaResponse(BaseModel):
    source: str
    criteriaPresent: bool
    notes: str


class EligibilityBreakdownResponse(BaseModel):
    trialId: str
    disclaimer: str
    inclusionCriteria: list[CriterionResponse]
    exclusionCriteria: list[CriterionResponse]
    preparationChecklist: list[str]
    meta: EligibilityMetaResponse
