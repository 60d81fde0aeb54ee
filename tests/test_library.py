"""Tests for the fetch/merge/save workflow in psn_library."""

import json
from unittest import mock

import pytest

import psn_library


@pytest.fixture
def status_lines():
    lines = []
    psn_library.add_status_listener(lines.append)
    yield lines
    psn_library.remove_status_listener(lines.append)


def read_json(path):
    return json.loads(path.read_text(encoding="utf-8"))


class TestPersistence:

    def test_load_library_missing(self, data_dir):
        assert psn_library.load_library() == []

    def test_append_purchased_page(self, data_dir):
        psn_library.append_purchased_page([{"name": "A"}])
        psn_library.append_purchased_page([{"name": "B"}, {"name": "C"}])
        assert [g["name"] for g in read_json(data_dir / psn_library.PURCHASED_RAW)] == ["A", "B", "C"]

    def test_append_purchased_page_over_corrupt_file(self, data_dir, status_lines):
        (data_dir / psn_library.PURCHASED_RAW).write_text("[broken")
        psn_library.append_purchased_page([{"name": "A"}])
        assert read_json(data_dir / psn_library.PURCHASED_RAW) == [{"name": "A"}]
        assert any("overwriting" in line for line in status_lines)

    def test_write_raw_failure_reported(self, data_dir, status_lines):
        psn_library.write_raw("unserialisable.json", {"x": object()})
        assert any("Failed to write unserialisable.json" in line for line in status_lines)

    def test_unicode_written_verbatim(self, data_dir):
        psn_library.write_raw("names.json", [{"name": "Pokémon™"}])
        assert "Pokémon™" in (data_dir / "names.json").read_text(encoding="utf-8")


class TestMerge:

    def test_merge_and_save(self, data_dir, purchased_batch, titles_batch, played_batch):
        library = psn_library.merge_and_save(purchased_batch, titles_batch, played_batch)
        assert read_json(data_dir / psn_library.FULL_LIBRARY) == library
        assert len(library) == 3
        assert read_json(data_dir / psn_library.MERGE_LOG)[0]["tier"] == "name"

    def test_merge_from_raw(self, data_dir, purchased_batch, titles_batch, played_batch):
        psn_library.save_json(str(data_dir / psn_library.PURCHASED_RAW), purchased_batch)
        psn_library.save_json(str(data_dir / psn_library.TITLES_RAW), titles_batch)
        psn_library.save_json(str(data_dir / psn_library.PLAYED_RAW), {"titles": played_batch})
        library = psn_library.merge_from_raw()
        assert library == psn_library.merge_and_save(purchased_batch, titles_batch, played_batch)
        assert psn_library.load_library() == library

    def test_merge_from_raw_missing_files(self, data_dir, status_lines):
        assert psn_library.merge_from_raw() == []
        assert sum("treating as empty" in line for line in status_lines) == 3

    def test_write_preview(self, data_dir):
        path = psn_library.write_preview([{"name": "Game", "displayName": "Game", "platform": "PS5"}])
        assert path == str(data_dir / psn_library.OUTPUT_HTML)
        assert "Game" in (data_dir / psn_library.OUTPUT_HTML).read_text(encoding="utf-8")


class TestFetchFullLibrary:

    def test_no_config(self, data_dir, status_lines):
        assert psn_library.fetch_full_library() is None
        assert status_lines[-1] == "No config found. Use Save Info first."

    def test_refresh_failure(self, data_dir, fresh_tokens, status_lines):
        cfg = {"username": "player1", "tokens": fresh_tokens}
        with mock.patch("psn_auth.load_config", return_value=cfg), \
                mock.patch("psn_auth.refresh_tokens_if_needed",
                           side_effect=psn_library.psn_auth.PSNAuthError("Refresh token expired")):
            assert psn_library.fetch_full_library() is None
        assert status_lines[-1] == "Fetch full library failed: Refresh token expired"

    def test_missing_account_id(self, data_dir, fresh_tokens, status_lines):
        cfg = {"username": "player1", "tokens": fresh_tokens}
        with mock.patch("psn_auth.load_config", return_value=cfg), \
                mock.patch("psn_api.get_profile_from_username", return_value={"error": "not found"}):
            assert psn_library.fetch_full_library() is None
        assert status_lines[-1] == "Cannot fetch library: missing accountId."

    def test_full_run(self, data_dir, fresh_tokens, purchased_batch, titles_batch, played_batch,
                      status_lines):
        cfg = {"username": "player1", "tokens": fresh_tokens}

        def fake_fetch_all(tokens, on_page=None):
            on_page(purchased_batch[:2], 2)
            on_page(purchased_batch[2:], 3)
            return purchased_batch

        with mock.patch("psn_auth.load_config", return_value=cfg), \
                mock.patch("psn_api.get_profile_from_username",
                           return_value={"profile": {"accountId": "123"}}), \
                mock.patch("psn_api.fetch_all_purchased", side_effect=fake_fetch_all), \
                mock.patch("psn_api.get_user_titles", return_value=titles_batch) as titles, \
                mock.patch("psn_api.get_user_played_games", return_value={"titles": played_batch}):
            library = psn_library.fetch_full_library()

        titles.assert_called_once_with(fresh_tokens, "123")
        assert [e["displayName"] for e in library] == ["Returnal", "Marvel's Spider-Man", "Astro's Playroom"]
        assert read_json(data_dir / psn_library.PURCHASED_RAW) == purchased_batch
        assert read_json(data_dir / psn_library.TITLES_RAW) == titles_batch
        assert read_json(data_dir / psn_library.PLAYED_RAW) == {"titles": played_batch}
        assert read_json(data_dir / psn_library.PLAYED_DISTILLED)[0]["images"]["master"] == "https://img/master.png"
        assert read_json(data_dir / psn_library.PROFILE_RAW)["profile"]["accountId"] == "123"
        assert read_json(data_dir / psn_library.FULL_LIBRARY) == library
        assert "Purchased batch: 1 items (total 3)" in status_lines

    def test_stale_purchased_file_replaced(self, data_dir, fresh_tokens):
        psn_library.save_json(str(data_dir / psn_library.PURCHASED_RAW), [{"name": "Old"}])
        cfg = {"username": "player1", "tokens": fresh_tokens}
        with mock.patch("psn_auth.load_config", return_value=cfg), \
                mock.patch("psn_api.get_profile_from_username",
                           return_value={"profile": {"accountId": "123"}}), \
                mock.patch("psn_api.get_purchased_games", return_value=[]), \
                mock.patch("psn_api.get_user_titles", return_value=[]), \
                mock.patch("psn_api.get_user_played_games", return_value=[]):
            assert psn_library.fetch_full_library() == []
        assert not (data_dir / psn_library.PURCHASED_RAW).exists()


def test_status_listener_removed(data_dir):
    lines = []
    psn_library.add_status_listener(lines.append)
    psn_library.append_status("one")
    psn_library.remove_status_listener(lines.append)
    psn_library.append_status("two")
    assert lines == ["one"]
