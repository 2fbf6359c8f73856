import asyncio
from datetime import datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker

from viralscope.database import init_models
from viralscope.errors import NotFound
from viralscope.schemas import AnalysisResult
from viralscope.store import NewAnalysis, ResultStore


class StepClock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self):
        self.now += timedelta(minutes=1)
        return self.now


@pytest.fixture
def store(db_engine):
    asyncio.run(init_models(db_engine))
    return ResultStore(async_sessionmaker(db_engine, expire_on_commit=False), clock=StepClock())


def new_text(owner="user-1", subject="Check out my new gadget!", score=72):
    return NewAnalysis(
        owner=owner,
        subject=subject,
        subject_kind="text",
        result=AnalysisResult(
            virality_score=score, emotional_tone="Excitement", suggestions=["a", "b"]
        ),
    )


def test_create_then_get_round_trips(store):
    created = asyncio.run(store.create(new_text()))
    fetched = asyncio.run(store.get_by_id(created.id, owner="user-1"))

    assert fetched == created
    assert fetched.subject == "Check out my new gadget!"
    assert fetched.suggestions == ["a", "b"]
    assert fetched.embeddings is None


def test_video_fields_are_stored(store):
    new = NewAnalysis(
        owner="user-1",
        subject="https://videos.example.com/watch/1",
        subject_kind="video",
        result=AnalysisResult(virality_score=60, emotional_tone="Calm", suggestions=["x"]),
        vision_analysis="A cat.",
        transcript="meow",
        embeddings=[0.5, 0.25],
    )
    created = asyncio.run(store.create(new))
    fetched = asyncio.run(store.get_by_id(created.id))
    assert fetched.embeddings == [0.5, 0.25]
    assert fetched.transcript == "meow"
    assert fetched.subject_kind == "video"


def test_ids_are_unique(store):
    ids = {asyncio.run(store.create(new_text())).id for _ in range(5)}
    assert len(ids) == 5


def test_missing_record_is_not_found(store):
    with pytest.raises(NotFound):
        asyncio.run(store.get_by_id("does-not-exist"))


def test_other_owners_record_is_not_found(store):
    created = asyncio.run(store.create(new_text(owner="user-1")))
    with pytest.raises(NotFound):
        asyncio.run(store.get_by_id(created.id, owner="user-2"))


def test_list_by_owner_is_newest_first(store):
    for score in (10, 20, 30):
        asyncio.run(store.create(new_text(score=score)))
    asyncio.run(store.create(new_text(owner="someone-else")))

    records = asyncio.run(store.list_by_owner("user-1"))
    assert [r.virality_score for r in records] == [30, 20, 10]
    stamps = [r.created_at for r in records]
    assert all(a > b for a, b in zip(stamps, stamps[1:]))


def test_list_by_owner_without_records_is_empty(store):
    assert asyncio.run(store.list_by_owner("nobody")) == []


def test_usage_counter(store):
    assert asyncio.run(store.usage_today()) == 0
    asyncio.run(store.record_usage())
    asyncio.run(store.record_usage())
    assert asyncio.run(store.usage_today()) == 2
