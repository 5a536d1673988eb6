"""
Token cache and one-shot message store.

Scope:
    - File cache persists across instances, is private (0600) and tolerates corruption
    - `read_session` treats partial token sets as incomplete
    - `clear_session` removes every session key
    - Message store pops once
"""
from __future__ import annotations

import os
import stat

from labportal.identity_access.stores import (
    KEY_ACCESS_TOKEN,
    KEY_ID_TOKEN,
    KEY_LAST_REFRESH_TIME,
    KEY_REFRESH_TOKEN,
    SESSION_KEYS,
    FileTokenCache,
    InMemoryTokenCache,
    MessageStore,
    clear_session,
    read_session,
)


def test_file_cache_round_trip_between_instances(tmp_path):
    path = tmp_path / "nested" / "tokens.json"
    FileTokenCache(path).set(KEY_ID_TOKEN, "id-1")

    other = FileTokenCache(path)

    assert other.get(KEY_ID_TOKEN) == "id-1"
    other.remove(KEY_ID_TOKEN)
    assert FileTokenCache(path).get(KEY_ID_TOKEN) is None


def test_file_cache_is_private(tmp_path):
    path = tmp_path / "tokens.json"
    FileTokenCache(path).set(KEY_ACCESS_TOKEN, "secret")

    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600


def test_corrupt_file_reads_as_empty(tmp_path):
    path = tmp_path / "tokens.json"
    path.write_text("{not json", encoding="utf-8")
    cache = FileTokenCache(path)

    assert cache.get(KEY_ID_TOKEN) is None
    cache.set(KEY_ID_TOKEN, "fresh")
    assert cache.get(KEY_ID_TOKEN) == "fresh"


def test_missing_file_reads_as_empty(tmp_path):
    assert FileTokenCache(tmp_path / "absent.json").get(KEY_ID_TOKEN) is None


def test_read_session_requires_all_tokens():
    cache = InMemoryTokenCache({KEY_ID_TOKEN: "id", KEY_ACCESS_TOKEN: "acc"})

    assert read_session(cache).complete is False
    cache.set(KEY_REFRESH_TOKEN, "ref")
    assert read_session(cache).complete is True


def test_read_session_ignores_unparseable_timestamps():
    cache = InMemoryTokenCache({KEY_LAST_REFRESH_TIME: "yesterday"})

    assert read_session(cache).last_refresh_time is None


def test_clear_session_removes_every_key():
    cache = InMemoryTokenCache({key: "x" for key in SESSION_KEYS} | {"unrelated": "keep"})

    clear_session(cache)

    assert cache.snapshot() == {"unrelated": "keep"}


def test_message_store_pops_once():
    store = MessageStore()
    store.put("labAccessError", "locked")

    assert store.pop("labAccessError") == "locked"
    assert store.pop("labAccessError") is None


def test_file_backed_messages_survive_a_new_store(tmp_path):
    path = tmp_path / "messages.json"
    MessageStore(FileTokenCache(path)).put("labAccessError", "Lab 3 opens on Monday")

    reopened = MessageStore(FileTokenCache(path))

    assert reopened.pop("labAccessError") == "Lab 3 opens on Monday"
    assert MessageStore(FileTokenCache(path)).pop("labAccessError") is None
