from app.pipeline.persistence import SearchPersistence
from app.schemas.trials import ScoredTrial


def scored(nct_id, score=82.0):
    return ScoredTrial(
        nctId=nct_id,
        title=f"Study {nct_id}",
        url=f"https://clinicaltrials.gov/study/{nct_id}",
        matchScore=score,
        matchLabel="Strong Match",
        matchReason="Age and condition fit.",
    )


def test_saved_search_loads_back_identically(db):
    store = SearchPersistence(db)
    results = [scored("NCT00000001"), scored("NCT00000002", 55.0)]

    search_id = store.save(
        mode="form",
        condition="sickle cell disease",
        age=34,
        location="Atlanta, GA",
        results=results,
        medications=["hydroxyurea"],
        additional_info="two crises last year",
    )
    record = store.load(search_id)

    assert record.id == search_id
    assert record.mode == "form"
    assert record.condition == "sickle cell disease"
    assert record.age == 34
    assert record.location == "Atlanta, GA"
    assert record.medications == ["hydroxyurea"]
    assert record.additional_info == "two crises last year"
    assert record.results == results
    assert record.created_at.tzinfo is not None


def test_optional_fields_stay_empty(db):
    store = SearchPersistence(db)
    search_id = store.save(mode="chat", condition="als", age=61, location="", results=[])

    record = store.load(search_id)

    assert record.medications is None
    assert record.additional_info is None
    assert record.results == []


def test_ids_are_unique(db):
    store = SearchPersistence(db)
    ids = {store.save(mode="form", condition="als", age=61, location="", results=[]) for _ in range(5)}

    assert len(ids) == 5


def test_unknown_or_malformed_id_is_none(db):
    store = SearchPersistence(db)

    assert store.load("0" * 32) is None
    assert store.load("") is None
    assert store.load("x" * 200) is None
