from __future__ import annotations

import json
from datetime import timedelta

from wp_git_push.config import Credentials, Options
from wp_git_push.registry import OptionStore, PluginRegistry, SavedLog


def test_registry_round_trip(store: OptionStore) -> None:
    registry = PluginRegistry(store)
    assert registry.all() == {}

    registry.register("foo", "acme/foo")
    assert registry.is_registered("foo")
    assert registry.github_repo("foo") == "acme/foo"

    reloaded = PluginRegistry(OptionStore(store.path.parent))
    assert reloaded.all()["foo"].github_repo == "acme/foo"

    assert registry.unregister("foo") is True
    assert registry.unregister("foo") is False
    assert registry.github_repo("foo") is None


def test_registry_is_a_flat_blob(store: OptionStore) -> None:
    PluginRegistry(store).register("foo", "acme/foo")
    data = json.loads(store.path.read_text())
    assert set(data["registered_plugins"]["foo"]) == {"github_repo", "registered_at"}


def test_malformed_entries_are_skipped(store: OptionStore) -> None:
    store.set("registered_plugins", {"bad": {"github_repo": "x/y"}, "ok": {"github_repo": "a/b", "registered_at": "2024-01-01T00:00:00+00:00"}})
    assert list(PluginRegistry(store).all()) == ["ok"]


def test_credentials_cache_and_invalidate(store: OptionStore, options: Options, monkeypatch) -> None:
    monkeypatch.setenv("GITHUB_TOKEN", "from-env")
    credentials = Credentials(store, options)
    assert credentials.token == "from-env"

    store.set("github_token", "stored")
    assert credentials.token == "from-env"
    credentials.invalidate()
    assert credentials.token == "stored"

    credentials.save(None)
    assert store.get("github_token") is None
    assert credentials.token == "from-env"


def test_saved_log_expires(store: OptionStore) -> None:
    log = SavedLog(store)
    log.save("line one\nline two")
    assert log.load() == "line one\nline two"
    log.clear()
    assert log.load() is None

    expired = SavedLog(store, ttl=timedelta(seconds=-1))
    expired.save("stale")
    assert expired.load() is None
    assert store.get("saved_log") is None
