"""Shared helpers for calling Claude and reading JSON out of its replies."""
import json
import re
from functools import lru_cache
from typing import Any, Optional

from app.config import get_settings


@lru_cache
def _client(api_key: str, timeout: float):
    from anthropic import Anthropic
    return Anthropic(api_key=api_key, timeout=timeout, max_retries=1)


def get_anthropic_client(settings=None) -> Optional[Any]:
    """Return a shared Anthropic client, or None when no API key is configured."""
    settings = settings or get_settings()
    if not settings.anthropic_api_key:
        return None
    return _client(settings.anthropic_api_key, settings.llm_timeout_seconds)


def response_text(response) -> str:
    return "".join(
        getattr(block, "text", "") for block in response.content
        if getattr(block, "type", "text") == "text"
    ).strip()


def parse_json_content(content: str) -> Any:
    """json.loads that tolerates markdown code fences around the payload."""
    content = content.strip()
    # Handle cases where LLM wraps in markdown code blocks
    if content.startswith("```"):
        content = re.sub(r"^```(?:json)?\n?", "", content)
        content = re.sub(r"\n?```$", "", content)
    return json.loads(content)
