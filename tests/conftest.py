"""Shared fixtures for the PSN library tracker tests."""

import pytest

import psn_auth
import psn_library


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    """Point every data file (config, raw responses, outputs) at tmp_path."""
    monkeypatch.setattr(psn_library, "DATA_DIR", str(tmp_path))
    monkeypatch.setattr(psn_auth, "CONFIG_FILE", str(tmp_path / "psn_config.json"))
    monkeypatch.setattr(psn_auth, "_fernet", None)
    return tmp_path


@pytest.fixture
def fresh_tokens():
    """Tokens fetched 'now' that stay valid for an hour."""
    return {
        "accessToken": "access-1",
        "expiresIn": 3600,
        "refreshToken": "refresh-1",
        "refreshTokenExpiresIn": 5184000,
        "lastFetched": psn_auth._now_ms(),
    }


@pytest.fixture
def purchased_batch():
    return [
        {"titleId": "PPSA01234_00", "productId": "EP9000-PPSA01234_00-GAME000000000000",
         "entitlementId": "EP9000-PPSA01234_00-GAME000000000000",
         "name": "Returnal™", "platform": "PS5",
         "image": {"url": "https://image.api.playstation.com/returnal.png"}},
        {"titleId": "CUSA07408_00", "name": "Marvel's Spider-Man", "platform": "PS4"},
        {"productId": "EP0001-CUSA00001_00-MEMORYRETAILDEMO", "name": "Memory Test"},
    ]


@pytest.fixture
def titles_batch():
    return [
        {"npCommunicationId": "NPWR20188_00", "trophyTitleName": "Returnal",
         "trophyTitlePlatform": "PS5", "progress": 42,
         "definedTrophies": {"bronze": 30, "silver": 10, "gold": 4, "platinum": 1},
         "trophyTitleIconUrl": "https://image.api.playstation.com/trophy/returnal.png"},
        {"npCommunicationId": "NPWR99999_00", "trophyTitleName": "Astro's Playroom",
         "trophyTitlePlatform": "PS5", "progress": 100},
    ]


@pytest.fixture
def played_batch():
    return [
        {"titleId": "PPSA01234_00", "name": "Returnal", "category": "ps5_native_game",
         "playCount": 12, "firstPlayedDateTime": "2021-05-01T10:00:00Z",
         "lastPlayedDateTime": "2021-06-01T10:00:00Z", "playDuration": "PT40H",
         "concept": {"id": 10000176, "genres": ["ACTION"], "titleIds": ["PPSA01234_00"],
                     "media": {"images": [
                         {"type": "GAMEHUB_COVER_ART", "url": "https://img/cover.png"},
                         {"type": "MASTER", "url": "https://img/master.png"},
                     ]}}},
    ]
