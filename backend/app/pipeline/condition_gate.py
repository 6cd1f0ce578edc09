"""Rejects condition queries too broad to search and score sensibly."""
import re
from typing import Iterable

from app.config import get_settings

_WHITESPACE = re.compile(r"\s+")


def normalize_condition(text: str | None) -> str:
    return _WHITESPACE.sub(" ", (text or "").strip()).lower()


class ConditionGate:
    def __init__(self, broad_terms: Iterable[str], allowed_abbreviations: Iterable[str]):
        self.broad_terms = {normalize_condition(t) for t in broad_terms}
        self.allowed_abbreviations = {normalize_condition(a) for a in allowed_abbreviations}

    @classmethod
    def from_settings(cls, settings=None) -> "ConditionGate":
        settings = settings or get_settings()
        return cls(settings.broad_condition_terms, settings.allowed_condition_abbreviations)

    def is_vague(self, condition_text: str | None) -> bool:
        normalized = normalize_condition(condition_text)
        if not normalized:
            return True
        if normalized in self.broad_terms:
            return True
        if " " not in normalized:
            return normalized not in self.allowed_abbreviations
        return False
