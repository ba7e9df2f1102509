from unittest.mock import MagicMock

import pytest
import redis

from marketplace.security.token_store import (
    CsrfRecord,
    MemoryTokenStore,
    RedisTokenStore,
    create_token_store,
)


def test_memory_store_set_get_delete():
    store = MemoryTokenStore()
    record = CsrfRecord(token="abc", expires_at=100.0)

    store.set("s1", record, ttl=60)
    assert store.get("s1") == record

    store.delete("s1")
    assert store.get("s1") is None


def test_memory_compare_and_swap():
    store = MemoryTokenStore()
    old = CsrfRecord(token="old", expires_at=100.0)
    new = CsrfRecord(token="new", expires_at=200.0)
    store.set("s1", old, ttl=60)

    assert store.compare_and_swap("s1", new, None) is False
    assert store.get("s1") == old

    assert store.compare_and_swap("s1", old, new) is True
    assert store.get("s1") == new

    assert store.compare_and_swap("s1", new, None) is True
    assert store.get("s1") is None


def test_memory_sweep_and_stats():
    store = MemoryTokenStore()
    store.set("expired", CsrfRecord(token="a", expires_at=10.0), ttl=1)
    store.set("active", CsrfRecord(token="b", expires_at=100.0), ttl=1)

    assert store.stats(now=50.0) == {"total_tokens": 2, "active_tokens": 1}
    assert store.sweep(now=50.0) == 1
    assert store.get("expired") is None
    assert store.get("active") is not None


def test_record_json():
    record = CsrfRecord(token="abc", expires_at=123.5)
    assert CsrfRecord.from_json(record.to_json()) == record
    assert CsrfRecord.from_json(record.to_json().encode()) == record


def test_redis_store_sets_with_expiry():
    client = MagicMock()
    store = RedisTokenStore(client)
    record = CsrfRecord(token="abc", expires_at=123.0)

    store.set("s1", record, ttl=86400)

    client.set.assert_called_once_with("csrf:s1", record.to_json(), ex=86400)


def test_redis_store_get():
    client = MagicMock()
    record = CsrfRecord(token="abc", expires_at=123.0)
    client.get.return_value = record.to_json().encode()

    assert RedisTokenStore(client).get("s1") == record
    client.get.assert_called_once_with("csrf:s1")

    client.get.return_value = None
    assert RedisTokenStore(client).get("s1") is None


def test_redis_compare_and_swap_deletes_matching_record():
    record = CsrfRecord(token="abc", expires_at=123.0)
    client = MagicMock()
    pipe = client.pipeline.return_value.__enter__.return_value
    pipe.get.return_value = record.to_json()

    assert RedisTokenStore(client).compare_and_swap("s1", record, None) is True
    pipe.watch.assert_called_once_with("csrf:s1")
    pipe.delete.assert_called_once_with("csrf:s1")
    pipe.execute.assert_called_once()


def test_redis_compare_and_swap_mismatch():
    client = MagicMock()
    pipe = client.pipeline.return_value.__enter__.return_value
    pipe.get.return_value = CsrfRecord(token="other", expires_at=1.0).to_json()

    expected = CsrfRecord(token="abc", expires_at=123.0)
    assert RedisTokenStore(client).compare_and_swap("s1", expected, None) is False
    pipe.execute.assert_not_called()


def test_redis_compare_and_swap_concurrent_write():
    record = CsrfRecord(token="abc", expires_at=123.0)
    client = MagicMock()
    pipe = client.pipeline.return_value.__enter__.return_value
    pipe.get.return_value = record.to_json()
    pipe.execute.side_effect = redis.WatchError()

    assert RedisTokenStore(client).compare_and_swap("s1", record, None) is False


def test_redis_stats_counts_prefixed_keys():
    client = MagicMock()
    client.scan_iter.return_value = iter([b"csrf:a", b"csrf:b"])

    assert RedisTokenStore(client).stats() == {"total_tokens": 2, "active_tokens": 2}
    client.scan_iter.assert_called_once_with(match="csrf:*")


def test_create_token_store():
    assert isinstance(create_token_store("memory://"), MemoryTokenStore)
    assert isinstance(create_token_store("redis://localhost:6379/0"), RedisTokenStore)
    with pytest.raises(ValueError):
        create_token_store("mongodb://localhost")
