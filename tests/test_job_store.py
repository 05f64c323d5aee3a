from __future__ import annotations

import fakeredis
import pytest
import redis

from podflow.infrastructure import InMemoryJobStore, JobStoreError, RedisJobStore


def test_entries_expire_after_ttl(clock):
    store = InMemoryJobStore(ttl_seconds=600, clock=clock)
    store.put("transcription:job-1", {"status": "processing"})

    clock.advance(599)
    assert store.get("transcription:job-1") == {"status": "processing"}

    clock.advance(1)
    assert store.get("transcription:job-1") is None


def test_put_overwrites_and_refreshes_retention(clock):
    store = InMemoryJobStore(ttl_seconds=10, clock=clock)
    store.put("content:wf", {"status": "processing"})
    clock.advance(8)
    store.put("content:wf", {"status": "completed"})
    clock.advance(8)
    assert store.get("content:wf") == {"status": "completed"}


def test_purge_expired_counts_evictions(clock):
    store = InMemoryJobStore(ttl_seconds=5, clock=clock)
    store.put("a", {})
    store.put("b", {})
    clock.advance(3)
    store.put("c", {})
    clock.advance(2)
    assert store.purge_expired() == 2
    assert len(store) == 1


def test_unread_entries_are_swept_on_later_writes(clock):
    store = InMemoryJobStore(ttl_seconds=600, clock=clock)
    for index in range(1000):
        store.put(f"transcription:job-{index}", {"status": "processing"})

    clock.advance(10_000)
    store.put("content:wf", {"status": "completed"})

    assert len(store) == 1
    assert store.get("content:wf") == {"status": "completed"}


def test_sweep_keeps_entries_still_within_retention(clock):
    store = InMemoryJobStore(ttl_seconds=10, clock=clock)
    store.put("old", {})
    clock.advance(6)
    store.put("young", {})
    clock.advance(5)
    store.put("new", {})

    assert len(store) == 2
    assert store.get("young") == {}


def test_values_are_stored_by_value(clock):
    store = InMemoryJobStore(clock=clock)
    payload = {"status": "processing"}
    store.put("k", payload)
    payload["status"] = "changed"
    assert store.get("k") == {"status": "processing"}


@pytest.fixture()
def fake_redis():
    return fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


def test_redis_store_sets_expiry(fake_redis):
    store = RedisJobStore(fake_redis, ttl_seconds=600)
    store.put("transcription:job-42", {"status": "completed", "transcript": "Hi"})

    assert store.get("transcription:job-42") == {"status": "completed", "transcript": "Hi"}
    ttl = fake_redis.ttl("podflow:transcription:job-42")
    assert 0 < ttl <= 600


def test_redis_store_delete_and_reset(fake_redis):
    store = RedisJobStore(fake_redis, ttl_seconds=60)
    store.put("a", {"x": 1})
    store.put("b", {"x": 2})
    fake_redis.set("other:key", "kept")

    store.delete("a")
    assert store.get("a") is None

    store.reset()
    assert store.get("b") is None
    assert fake_redis.get("other:key") == "kept"


def test_redis_failures_raise_job_store_error(monkeypatch, fake_redis):
    store = RedisJobStore(fake_redis)

    def boom(*args, **kwargs):
        raise redis.ConnectionError("connection refused")

    monkeypatch.setattr(fake_redis, "get", boom)
    with pytest.raises(JobStoreError, match="connection refused"):
        store.get("a")


def test_from_url_builds_a_client(monkeypatch):
    server = fakeredis.FakeServer()

    def fake_from_url(url, **kwargs):
        assert url == "redis://cache:6379/1"
        return fakeredis.FakeRedis(server=server, **kwargs)

    monkeypatch.setattr(redis.Redis, "from_url", staticmethod(fake_from_url))
    store = RedisJobStore.from_url("redis://cache:6379/1", ttl_seconds=30)
    store.put("k", {"v": 1})
    assert store.get("k") == {"v": 1}
