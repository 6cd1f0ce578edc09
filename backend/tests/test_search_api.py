from app.api.deps import RateLimitExceeded
from app.config import get_settings
from app.pipeline.errors import RATE_LIMITED_MESSAGE, VAGUE_CONDITION_MESSAGE, ErrorKind
from app.pipeline.rate_limit import RateLimiter
from fakes import auto_scorer, make_study

BODY = {"condition": "sickle cell disease", "age": 34, "location": "Atlanta", "medications": "hydroxyurea, folic acid"}


def test_search_returns_scored_trials_and_share_id(client, registry, llm):
    registry.add_search("sickle cell disease", [make_study("NCT00000001"), make_study("NCT00000002")])
    registry.add_detail("NCT00000001")
    llm.handler = auto_scorer(score=88)

    response = client.post("/api/search", json=BODY)

    assert response.status_code == 200
    data = response.json()
    assert data["count"] == 2
    assert "error" not in data
    assert [t["matchLabel"] for t in data["trials"]] == ["Strong Match", "Strong Match"]

    saved = client.get(f"/api/searches/{data['searchId']}")
    assert saved.status_code == 200
    record = saved.json()
    assert record["mode"] == "form"
    assert record["medications"] == ["hydroxyurea", "folic acid"]
    assert [t["nctId"] for t in record["results"]] == ["NCT00000001", "NCT00000002"]
    assert [t["matchScore"] for t in record["results"]] == [88, 88]


def test_vague_condition_is_reported_in_band(client, registry):
    response = client.post("/api/search", json={**BODY, "condition": "cancer"})

    assert response.status_code == 200
    assert response.json() == {"trials": [], "count": 0, "error": VAGUE_CONDITION_MESSAGE}
    assert registry.calls == []


def test_registry_failure_is_reported_in_band(client, registry):
    registry.failing_terms.add("sickle cell disease")

    response = client.post("/api/search", json=BODY)

    assert response.status_code == 200
    data = response.json()
    assert data["trials"] == []
    assert data["error"]
    assert "searchId" not in data


def test_invalid_age_is_rejected(client):
    response = client.post("/api/search", json={**BODY, "age": 130})

    assert response.status_code == 422


def test_rate_limit_returns_429_with_headers(client, monkeypatch):
    monkeypatch.setattr(get_settings(), "search_rate_limit", 2)
    headers = {"cf-connecting-ip": "203.0.113.9"}
    body = {**BODY, "condition": "cancer"}

    assert client.post("/api/search", json=body, headers=headers).status_code == 200
    assert client.post("/api/search", json=body, headers=headers).status_code == 200
    limited = client.post("/api/search", json=body, headers=headers)

    assert limited.status_code == 429
    assert limited.json() == {"trials": [], "error": RATE_LIMITED_MESSAGE}
    assert limited.headers["X-RateLimit-Limit"] == "2"
    assert limited.headers["X-RateLimit-Remaining"] == "0"
    assert int(limited.headers["Retry-After"]) >= 1
    assert int(limited.headers["X-RateLimit-Reset"]) > 0

    other_client = client.post("/api/search", json=body, headers={"cf-connecting-ip": "198.51.100.7"})
    assert other_client.status_code == 200


def test_unknown_search_is_404(client):
    assert client.get("/api/searches/" + "0" * 32).status_code == 404


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok", "service": "TrialMatch API"}


def test_scoring_outage_is_reported_in_warnings(client, registry, llm):
    registry.add_search("sickle cell disease", [make_study("NCT00000001")])

    data = client.post("/api/search", json=BODY).json()

    assert data["trials"][0]["matchScore"] == 50
    assert data["warnings"] == ["1 of 1 trials could not be scored automatically."]
    assert "error" not in data


def test_rate_limit_denial_is_tagged():
    limiter = RateLimiter(clock=lambda: 0)
    limiter.check("k", limit=1, window_ms=1_000)
    result = limiter.check("k", limit=1, window_ms=1_000)
    assert result.ok is False
    exc = RateLimitExceeded(result)

    assert exc.error.kind is ErrorKind.ADMISSION_DENIED
    assert exc.error.message == RATE_LIMITED_MESSAGE
