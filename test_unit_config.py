"""
Test suite for per-unit feed configuration files.
"""
import os

import pytest

from config.unit_config import (
    add_feed,
    get_active_feeds,
    get_all_unit_ids,
    get_orphaned_feed_policy,
    load_unit_config,
    remove_feed,
    require_unit_config,
    save_unit_config,
)
from utils.error_handling import ConfigError


def test_add_and_remove_feed(tmp_path):
    config_dir = str(tmp_path)

    ok, _ = add_feed("ward-1", "main", "https://example.org/ward.ics", config_dir=config_dir)
    assert ok
    duplicate, message = add_feed("ward-1", "main", "https://example.org/other.ics", config_dir=config_dir)
    assert not duplicate and "already exists" in message

    config = load_unit_config("ward-1", config_dir)
    assert config["feeds"] == [
        {"id": "main", "url": "https://example.org/ward.ics", "name": "main", "active": True}
    ]
    assert get_all_unit_ids(config_dir) == ["ward-1"]

    assert remove_feed("ward-1", "main", config_dir)[0] is True
    assert remove_feed("ward-1", "main", config_dir)[0] is False
    assert load_unit_config("ward-1", config_dir)["feeds"] == []


def test_missing_or_corrupt_config_falls_back_to_defaults(tmp_path):
    assert load_unit_config("ward-9", str(tmp_path))["feeds"] == []

    (tmp_path / "ward-2").mkdir()
    (tmp_path / "ward-2" / "config.json").write_text("{oops")
    assert load_unit_config("ward-2", str(tmp_path))["feeds"] == []


def test_active_feeds_skip_inactive_malformed_and_duplicate_entries():
    config = {"feeds": [
        {"id": "a", "url": "https://example.org/a.ics"},
        {"id": "b", "url": "https://example.org/b.ics", "active": False},
        {"id": "", "url": "https://example.org/c.ics"},
        {"id": "a", "url": "https://example.org/a-again.ics"},
    ]}
    assert [feed["id"] for feed in get_active_feeds(config)] == ["a"]


def test_orphaned_feed_policy_defaults_to_retain():
    assert get_orphaned_feed_policy({}) == "retain"
    assert get_orphaned_feed_policy({"orphaned_feed_policy": "PURGE"}) == "purge"
    assert get_orphaned_feed_policy({"orphaned_feed_policy": "shred"}) == "retain"


def test_strict_load_raises_instead_of_falling_back(tmp_path):
    with pytest.raises(ConfigError):
        require_unit_config("ward-9", str(tmp_path))

    (tmp_path / "ward-2").mkdir()
    (tmp_path / "ward-2" / "config.json").write_text('{"feeds": [{"id": "a", "url"')
    with pytest.raises(ConfigError):
        require_unit_config("ward-2", str(tmp_path))

    (tmp_path / "ward-2" / "config.json").write_text('{"feeds": "not-a-list"}')
    with pytest.raises(ConfigError):
        require_unit_config("ward-2", str(tmp_path))


def test_save_replaces_file_without_leaving_temp_files(tmp_path):
    config_dir = str(tmp_path)
    assert save_unit_config("ward-1", {"feeds": [], "orphaned_feed_policy": "purge"}, config_dir)
    assert save_unit_config("ward-1", {"feeds": [{"id": "a", "url": "https://example.org/a.ics"}]}, config_dir)

    assert os.listdir(tmp_path / "ward-1") == ["config.json"]
    assert [feed["id"] for feed in require_unit_config("ward-1", config_dir)["feeds"]] == ["a"]


def test_failed_save_keeps_previous_config(tmp_path):
    config_dir = str(tmp_path)
    save_unit_config("ward-1", {"feeds": [{"id": "a", "url": "https://example.org/a.ics"}]}, config_dir)

    assert save_unit_config("ward-1", {"feeds": [object()]}, config_dir) is False

    assert os.listdir(tmp_path / "ward-1") == ["config.json"]
    assert [feed["id"] for feed in require_unit_config("ward-1", config_dir)["feeds"]] == ["a"]


def test_add_feed_refuses_to_overwrite_unreadable_config(tmp_path):
    (tmp_path / "ward-1").mkdir()
    (tmp_path / "ward-1" / "config.json").write_text("{oops")

    ok, message = add_feed("ward-1", "main", "https://example.org/ward.ics", config_dir=str(tmp_path))

    assert ok is False and "could not be read" in message
    assert (tmp_path / "ward-1" / "config.json").read_text() == "{oops"
