"""Tests for the PSN API client (HTTP is mocked throughout)."""

import io
import json
import urllib.error
import urllib.parse
from unittest import mock

import pytest

import psn_api

TOKENS = {"accessToken": "abc"}


def _response(payload):
    resp = mock.MagicMock()
    resp.read.return_value = json.dumps(payload).encode("utf-8")
    resp.__enter__.return_value = resp
    return resp


def _http_error(code, body=b"error"):
    return urllib.error.HTTPError("https://example", code, "err", {}, io.BytesIO(body))


class TestApiRequest:

    def test_returns_parsed_json(self):
        with mock.patch("urllib.request.urlopen", return_value=_response({"a": 1})):
            assert psn_api.api_request("https://example") == {"a": 1}

    def test_retries_transient_status(self):
        side_effect = [_http_error(503), _response({"ok": True})]
        with mock.patch("urllib.request.urlopen", side_effect=side_effect) as urlopen, \
                mock.patch("psn_api.time.sleep") as sleep:
            assert psn_api.api_request("https://example") == {"ok": True}
        assert urlopen.call_count == 2
        sleep.assert_called_once_with(1)

    def test_client_error_gives_up_immediately(self):
        with mock.patch("urllib.request.urlopen", side_effect=_http_error(404)) as urlopen, \
                mock.patch("psn_api.time.sleep"):
            assert psn_api.api_request("https://example") is None
        assert urlopen.call_count == 1

    def test_network_error_exhausts_retries(self):
        with mock.patch("urllib.request.urlopen", side_effect=urllib.error.URLError("down")) as urlopen, \
                mock.patch("psn_api.time.sleep"):
            assert psn_api.api_request("https://example", retries=2) is None
        assert urlopen.call_count == 2

    def test_body_sent_as_json(self):
        with mock.patch("urllib.request.urlopen", return_value=_response({})) as urlopen:
            psn_api.api_request("https://example", method="POST", body={"x": 1})
        req = urlopen.call_args[0][0]
        assert req.data == b'{"x": 1}'
        assert req.get_method() == "POST"


class TestPurchased:

    def test_page_parsed(self):
        payload = {"data": {"purchasedTitlesRetrieve": {"games": [{"name": "A"}]}}}
        with mock.patch("psn_api.api_request", return_value=payload) as req:
            games = psn_api.get_purchased_games(TOKENS, start=100, size=50)
        assert games == [{"name": "A"}]
        url = req.call_args[0][0]
        query = urllib.parse.parse_qs(urllib.parse.urlparse(url).query)
        assert query["operationName"] == ["getPurchasedGameList"]
        variables = json.loads(query["variables"][0])
        assert variables["start"] == 100
        assert variables["size"] == 50
        assert variables["platform"] == ["ps4", "ps5"]
        assert req.call_args[1]["headers"]["Authorization"] == "Bearer abc"

    @pytest.mark.parametrize("payload", [None, {}, {"data": None}, {"data": {"purchasedTitlesRetrieve": None}}])
    def test_missing_page_is_empty(self, payload):
        with mock.patch("psn_api.api_request", return_value=payload):
            assert psn_api.get_purchased_games(TOKENS) == []

    def test_fetch_all_stops_on_short_page(self):
        pages = [[{"n": i} for i in range(3)], [{"n": i} for i in range(3)], [{"n": 99}]]
        seen = []
        with mock.patch("psn_api.get_purchased_games", side_effect=pages) as get:
            games = psn_api.fetch_all_purchased(
                TOKENS, on_page=lambda g, total: seen.append((len(g), total)), page_size=3, delay=0)
        assert len(games) == 7
        assert [c[1]["start"] for c in get.call_args_list] == [0, 3, 6]
        assert seen == [(3, 3), (3, 6), (1, 7)]

    def test_fetch_all_stops_on_empty_page(self):
        with mock.patch("psn_api.get_purchased_games", side_effect=[[{"n": 1}, {"n": 2}], []]) as get:
            games = psn_api.fetch_all_purchased(TOKENS, page_size=2, delay=0)
        assert len(games) == 2
        assert get.call_count == 2

    def test_fetch_all_nothing_purchased(self):
        on_page = mock.Mock()
        with mock.patch("psn_api.get_purchased_games", return_value=[]):
            assert psn_api.fetch_all_purchased(TOKENS, on_page=on_page, delay=0) == []
        on_page.assert_not_called()


class TestTitlesAndPlayed:

    def test_user_titles(self):
        with mock.patch("psn_api.api_request", return_value={"trophyTitles": [{"npCommunicationId": "N"}]}) as req:
            titles = psn_api.get_user_titles(TOKENS, "123")
        assert titles == [{"npCommunicationId": "N"}]
        assert "/users/123/trophyTitles" in req.call_args[0][0]

    def test_user_titles_failure(self):
        with mock.patch("psn_api.api_request", return_value=None):
            assert psn_api.get_user_titles(TOKENS, "123") == []

    @pytest.mark.parametrize("response,expected", [
        ([{"a": 1}], [{"a": 1}]),
        ({"titles": [{"a": 1}]}, [{"a": 1}]),
        ({"items": [{"b": 2}]}, [{"b": 2}]),
        ({"other": 1}, []),
        (None, []),
    ])
    def test_played_games_list(self, response, expected):
        assert psn_api.played_games_list(response) == expected

    def test_distill(self):
        raw = [{
            "titleId": "PPSA1", "name": "Game", "category": "ps5_native_game",
            "playCount": 2, "firstPlayedDateTime": "f", "lastPlayedDateTime": "l",
            "playDuration": "PT1H", "service": "none_purchased",
            "concept": {"id": 9, "genres": ["ACTION"],
                        "media": {"images": [{"type": "GAMEHUB_COVER_ART", "url": "c"}]}},
        }]
        assert psn_api.distill_played_games(raw) == [{
            "titleId": "PPSA1", "conceptId": 9, "name": "Game", "category": "ps5_native_game",
            "genres": ["ACTION"], "images": {"cover": "c"}, "playCount": 2,
            "firstPlayed": "f", "lastPlayed": "l", "playDuration": "PT1H",
        }]


def test_account_id_from_profile():
    assert psn_api.account_id_from_profile({"profile": {"accountId": "42"}}) == "42"
    assert psn_api.account_id_from_profile(None) is None
    assert psn_api.account_id_from_profile({"error": {}}) is None
