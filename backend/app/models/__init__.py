from app.models.eligibility import EligibilityCache
from app.models.search import Search

__all__ = [
    "EligibilityCache", "Search",
]
