from pydantic_settings import BaseSettings
from functools import lru_cache


DEFAULT_BROAD_CONDITION_TERMS = [
    "cancer", "cancers", "tumor", "tumour", "tumors", "disease", "diseases",
    "illness", "sickness", "sick", "condition", "disorder", "syndrome",
    "infection", "pain", "chronic pain", "chronic illness", "chronic disease",
    "rare disease", "genetic disease", "heart disease", "lung disease",
    "liver disease", "kidney disease", "blood disease", "autoimmune disease",
    "mental illness", "mental health", "neurological disorder", "carcinoma",
    "leukemia", "lymphoma", "sarcoma", "dementia", "not sure", "unknown",
]

DEFAULT_ALLOWED_ABBREVIATIONS = [
    "als", "ms", "sle", "copd", "ipf", "pah", "cf", "sma", "dmd", "scd",
    "hiv", "aml", "cll", "cml", "nsclc", "sclc", "tnbc", "hcc", "rcc",
    "gbm", "dlbcl", "mds", "pkd", "adpkd", "ibd", "nash", "mash", "pcos",
    "adhd", "ptsd", "ocd", "hd", "itp", "ttp", "hlh", "fop", "nmosd",
]


class Settings(BaseSettings):
    database_url: str = "postgresql://localhost/trialmatch"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-5-20250929"
    llm_timeout_seconds: float = 60.0
    ct_gov_base_url: str = "https://clinicaltrials.gov/api/v2"
    ct_gov_timeout_seconds: int = 15
    ct_gov_page_size: int = 10
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]
    log_level: str = "INFO"

    client_ip_header: str = "cf-connecting-ip"
    search_rate_limit: int = 30
    search_rate_window_ms: int = 60 * 60 * 1000
    chat_rate_limit: int = 60
    chat_rate_window_ms: int = 60 * 60 * 1000
    rate_limit_max_buckets: int = 10_000

    broad_condition_terms: list[str] = DEFAULT_BROAD_CONDITION_TERMS
    allowed_condition_abbreviations: list[str] = DEFAULT_ALLOWED_ABBREVIATIONS
    max_synonyms: int = 8

    eligibility_cache_ttl_days: int = 7
    max_trials_to_score: int = 20
    scoring_batch_size: int = 10

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
