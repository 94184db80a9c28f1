import json

import pytest

from castgate.errors import ValidationError
from castgate.storage import POSTS, SESSIONS, USERS, FlatFileStore, parse_iso


# ---------------------------------------------------------------------------
# put / get / delete
# ---------------------------------------------------------------------------

def test_put_then_get_returns_document_with_updated_at(store):
    stored = store.put(USERS, 42, {"fid": 42, "username": "alice"})

    assert stored["username"] == "alice"
    assert parse_iso(stored["updatedAt"]).tzinfo is not None
    assert store.get(USERS, 42) == stored
    assert store.get(USERS, "42") == stored


def test_put_is_full_overwrite(store):
    store.put(USERS, 1, {"fid": 1, "username": "old", "bio": "x"})
    store.put(USERS, 1, {"fid": 1, "username": "new"})

    doc = store.get(USERS, 1)
    assert doc["username"] == "new"
    assert "bio" not in doc


def test_get_missing_is_none(store):
    assert store.get(SESSIONS, "nope") is None


def test_delete(store):
    store.put(SESSIONS, "s1", {"signerId": "s1"})

    assert store.delete(SESSIONS, "s1") is True
    assert store.delete(SESSIONS, "s1") is False
    assert store.get(SESSIONS, "s1") is None


@pytest.mark.parametrize("key", ["", "  ", "..", "a/b", "a\\b"])
def test_unsafe_keys_rejected(store, key):
    with pytest.raises(ValidationError):
        store.put(USERS, key, {})


def test_unknown_namespace(store):
    with pytest.raises(ValueError):
        store.get("accounts", "1")


def test_corrupt_record_reads_as_missing(store, tmp_path):
    (tmp_path / "store" / USERS / "7.json").write_text("{not json", encoding="utf-8")

    assert store.get(USERS, 7) is None
    assert store.list_all(USERS) == []


def test_keys_ignore_temp_files(store, tmp_path):
    store.put(SESSIONS, "a", {})
    (tmp_path / "store" / SESSIONS / ".tmp_abc.json").write_text("{}", encoding="utf-8")

    assert store.keys(SESSIONS) == ["a"]
    assert store.count_all(SESSIONS) == 1


def test_documents_are_plain_json_on_disk(store, tmp_path):
    store.put(POSTS, "1_0xaa", {"id": "1_0xaa", "fid": 3})

    raw = json.loads((tmp_path / "store" / POSTS / "1_0xaa.json").read_text(encoding="utf-8"))
    assert raw["fid"] == 3


# ---------------------------------------------------------------------------
# derived queries
# ---------------------------------------------------------------------------

def test_posts_by_fid_filters_and_orders_newest_first(store):
    for ts, fid in [(100, 1), (300, 1), (200, 2), (250, 1)]:
        store.put(POSTS, f"{ts}_0x{ts}", {"id": f"{ts}_0x{ts}", "fid": fid, "timestamp": ts})

    posts = store.posts_by_fid(1)
    assert [p["timestamp"] for p in posts] == [300, 250, 100]

    assert [p["timestamp"] for p in store.posts_by_fid(1, limit=2)] == [300, 250]
    assert store.posts_by_fid(99) == []


def test_recent_posts(store):
    for ts in (5, 1, 3):
        store.put(POSTS, f"{ts}_0x", {"fid": 1, "timestamp": ts})

    assert [p["timestamp"] for p in store.recent_posts(limit=2)] == [5, 3]


def test_stats(tmp_path):
    store = FlatFileStore(tmp_path / "fresh")
    store.put(USERS, 1, {})
    store.put(POSTS, "1_0x", {})
    store.put(POSTS, "2_0x", {})

    stats = store.stats()
    assert (stats["users"], stats["posts"], stats["sessions"]) == (1, 2, 0)
    assert "lastUpdated" in stats
