import json

import pytest

from app.pipeline.llm_scoring import (
    AGE_MISMATCH_SCORE, NEUTRAL_SCORE, UNAVAILABLE_REASON, TrialScorer, label_for_score, parse_scores,
)
from app.pipeline.errors import ErrorKind
from app.schemas.trials import PatientProfile, TrialRecord
from fakes import FakeAnthropic, auto_scorer, scores_reply


def trial(nct_id, minimum_age="18 Years", maximum_age="75 Years"):
    return TrialRecord(
        nctId=nct_id,
        title=f"Study {nct_id}",
        conditions=["Sickle Cell Disease"],
        minimumAge=minimum_age,
        maximumAge=maximum_age,
        url=f"https://clinicaltrials.gov/study/{nct_id}",
    )


@pytest.fixture
def profile():
    return PatientProfile(condition="sickle cell disease", age=34, location="Atlanta")


def prompt_ids(kwargs):
    prompt = kwargs["messages"][-1]["content"]
    return [t["nctId"] for t in json.loads(prompt.split("Trials to score:\n", 1)[1])]


@pytest.mark.parametrize("score, label", [
    (100, "Strong Match"), (80, "Strong Match"), (79, "Possible Match"), (50, "Possible Match"),
    (49, "Worth Exploring"), (30, "Worth Exploring"), (29, "Unlikely"), (0, "Unlikely"),
])
def test_label_bands(score, label):
    assert label_for_score(score) == label


def test_scores_every_trial_in_order(profile):
    client = FakeAnthropic(auto_scorer(score=85))
    trials = [trial(f"NCT0000000{i}") for i in range(4)]

    scored = TrialScorer(client=client).score(trials, profile)

    assert [t.nctId for t in scored] == [t.nctId for t in trials]
    assert all(t.matchScore == 85 and t.matchLabel == "Strong Match" for t in scored)


def test_failing_trial_gets_neutral_score_without_dropping_others(profile):
    def handler(kwargs):
        ids = prompt_ids(kwargs)
        if "NCT00000002" in ids:
            raise RuntimeError("overloaded")
        return scores_reply(*[(i, 70, "Possible Match", "Condition matches.") for i in ids])

    trials = [trial(f"NCT0000000{i}") for i in range(1, 5)]

    scored = TrialScorer(client=FakeAnthropic(handler)).score(trials, profile)

    assert [t.nctId for t in scored] == ["NCT00000001", "NCT00000002", "NCT00000003", "NCT00000004"]
    failed = scored[1]
    assert failed.matchScore == NEUTRAL_SCORE
    assert failed.matchLabel is None
    assert failed.matchReason == UNAVAILABLE_REASON
    assert all(t.matchScore == 70 for i, t in enumerate(scored) if i != 1)


def test_retries_once_before_giving_up(profile):
    client = FakeAnthropic()

    scored = TrialScorer(client=client).score([trial("NCT00000001")], profile)

    assert [r["temperature"] for r in client.requests] == [0.0, 0.3]
    assert scored[0].matchScore == NEUTRAL_SCORE


def test_retry_can_recover(profile):
    attempts = []

    def handler(kwargs):
        attempts.append(kwargs["temperature"])
        if len(attempts) == 1:
            return "Sorry, here are the scores: not json"
        return scores_reply(("NCT00000001", 90, "Strong Match", "Fits well."))

    scored = TrialScorer(client=FakeAnthropic(handler)).score([trial("NCT00000001")], profile)

    assert attempts == [0.0, 0.3]
    assert scored[0].matchScore == 90


def test_age_out_of_range_skips_model(profile):
    client = FakeAnthropic(auto_scorer())
    pediatric = trial("NCT00000001", minimum_age="2 Years", maximum_age="17 Years")

    scored = TrialScorer(client=client).score([pediatric], profile)

    assert client.requests == []
    assert scored[0].matchScore == AGE_MISMATCH_SCORE
    assert scored[0].matchLabel == "Unlikely"
    assert "above the maximum of 17" in scored[0].matchReason


def test_no_client_gives_neutral_scores(profile):
    # No API key is configured in the test environment
    scorer = TrialScorer(client=None)
    assert scorer.client is None

    scored = scorer.score([trial("NCT00000001"), trial("NCT00000002")], profile)

    assert [t.matchScore for t in scored] == [NEUTRAL_SCORE, NEUTRAL_SCORE]


def test_label_follows_score_band(profile):
    client = FakeAnthropic(lambda kw: scores_reply(("NCT00000001", 85, "Possible Match", "Good fit.")))

    scored = TrialScorer(client=client).score([trial("NCT00000001")], profile)

    assert scored[0].matchLabel == "Strong Match"


def test_trial_missing_from_reply_is_neutral(profile):
    client = FakeAnthropic(lambda kw: scores_reply(("NCT00000001", 60, "Possible Match", "Maybe.")))

    scored = TrialScorer(client=client).score([trial("NCT00000001"), trial("NCT00000002")], profile)

    assert scored[0].matchScore == 60
    assert scored[1].matchScore == NEUTRAL_SCORE


def test_batches_respect_batch_size(profile):
    client = FakeAnthropic(auto_scorer())
    trials = [trial(f"NCT000000{i:02d}") for i in range(5)]

    TrialScorer(client=client, batch_size=2).score(trials, profile)

    assert [len(prompt_ids(r)) for r in client.requests] == [2, 2, 1]


def test_empty_input():
    assert TrialScorer(client=FakeAnthropic()).score([], PatientProfile(condition="als", age=50)) == []


def test_parse_scores_tolerates_fences_and_bad_entries():
    content = "```json\n" + json.dumps({"scores": [
        {"nctId": "NCT00000001", "matchScore": 75, "matchLabel": "Possible Match", "matchReason": "ok"},
        {"nctId": "NCT00000002", "matchScore": 140},
        {"matchScore": 20},
    ]}) + "\n```"

    scores = parse_scores(content)

    assert list(scores) == ["NCT00000001"]


def test_reply_without_scores_key_is_retried(profile):
    replies = iter([
        json.dumps({"results": []}),
        scores_reply(("NCT00000001", 82, "Strong Match", "Fits well.")),
    ])
    client = FakeAnthropic(lambda kw: next(replies))

    scored = TrialScorer(client=client).score([trial("NCT00000001")], profile)

    assert [r["temperature"] for r in client.requests] == [0.0, 0.3]
    assert scored[0].matchScore == 82


def test_parse_scores_requires_scores_key():
    with pytest.raises(ValueError):
        parse_scores(json.dumps({"nctId": "NCT00000001", "matchScore": 50}))


def test_report_flags_neutral_fallbacks(profile):
    client = FakeAnthropic(lambda kw: scores_reply(("NCT00000001", 60, "Possible Match", "Maybe.")))

    scored, error = TrialScorer(client=client).score_with_report(
        [trial("NCT00000001"), trial("NCT00000002")], profile,
    )

    assert len(scored) == 2
    assert error.kind is ErrorKind.SCORING_FAILED
    assert error.message == "1 of 2 trials could not be scored automatically."


def test_report_is_clean_when_every_trial_scores(profile):
    _, error = TrialScorer(client=FakeAnthropic(auto_scorer())).score_with_report([trial("NCT00000001")], profile)

    assert error is None
