"""
PSN API Client
==============
Thin urllib wrappers around the PlayStation Network endpoints the library
tracker reads: profile lookup, the purchased-games GraphQL query, trophy
titles and the played-games list.

Every call takes the token dict produced by psn_auth and returns parsed JSON
(or None when the request ultimately failed).
"""

import json
import logging
import ssl
import time
import urllib.error
import urllib.parse
import urllib.request

from psn_records import concept_images

PROFILE_URL = "https://us-prof.np.community.playstation.net/userProfile/v1/users/{username}/profile2"
GRAPHQL_URL = "https://web.np.playstation.com/api/graphql/v1/op"
TROPHY_TITLES_URL = "https://m.np.playstation.com/api/trophy/v1/users/{account_id}/trophyTitles"
PLAYED_GAMES_URL = "https://m.np.playstation.com/api/gamelist/v2/users/{account_id}/titles"

PURCHASED_OPERATION = "getPurchasedGameList"
PURCHASED_QUERY_HASH = "827a423f6a8ddca4107ac01395af2ec0eafd8396fc7fa204aaf9b7ed2eefa168"
PURCHASED_PAGE_SIZE = 100
PURCHASED_PAGE_DELAY = 0.2  # seconds between purchased pages
PURCHASED_PLATFORMS = ["ps4", "ps5"]

PLAYED_CATEGORIES = "ps4_game,ps5_native_game"
PLAYED_LIMIT = 200
TITLES_LIMIT = 800

# SSL context for all HTTPS calls
SSL_CTX = ssl.create_default_context()

log = logging.getLogger(__name__)


def auth_headers(tokens):
    return {
        "Authorization": f"Bearer {tokens['accessToken']}",
        "Accept": "application/json",
        "Content-Type": "application/json",
    }


def api_request(url, method="GET", headers=None, body=None, retries=3):
    """
    Make an HTTPS request, returning parsed JSON.
    Retries on transient errors; returns None once retries are exhausted.
    """
    hdrs = headers or {}
    data = None
    if body is not None:
        data = json.dumps(body).encode("utf-8")

    for attempt in range(retries):
        try:
            req = urllib.request.Request(url, data=data, headers=hdrs, method=method)
            with urllib.request.urlopen(req, context=SSL_CTX, timeout=30) as resp:
                raw = resp.read()
                return json.loads(raw)
        except urllib.error.HTTPError as e:
            err_body = ""
            try:
                err_body = e.read().decode("utf-8", errors="replace")[:500]
            except OSError:
                pass
            if e.code in (429, 500, 502, 503) and attempt < retries - 1:
                wait = 2 ** attempt
                log.warning("HTTP %s on %s... retry in %ss", e.code, url[:80], wait)
                time.sleep(wait)
                continue
            log.error("HTTP %s on %s... %s", e.code, url[:80], err_body[:200])
            return None
        except (OSError, ValueError) as e:
            if attempt < retries - 1:
                time.sleep(1)
                continue
            log.error("Error on %s...: %s", url[:80], e)
            return None
    return None


# ===========================================================================
# Profile
# ===========================================================================

def get_profile_from_username(tokens, username):
    """Look up a profile by online ID. Returns the raw {"profile": {...}} payload."""
    url = PROFILE_URL.format(username=urllib.parse.quote(username)) + "?" + urllib.parse.urlencode(
        {"fields": "accountId,onlineId,currentOnlineId"})
    return api_request(url, headers=auth_headers(tokens))


def account_id_from_profile(profile_resp):
    return ((profile_resp or {}).get("profile") or {}).get("accountId")


# ===========================================================================
# Purchased games (paginated GraphQL)
# ===========================================================================

def get_purchased_games(tokens, start=0, size=PURCHASED_PAGE_SIZE, platforms=None):
    """Fetch one page of purchased games. Returns the list of game dicts."""
    variables = {
        "isActive": True,
        "platform": platforms or PURCHASED_PLATFORMS,
        "size": size,
        "start": start,
        "sortBy": "ACTIVE_DATE",
        "sortDirection": "desc",
        "subscriptionService": "NONE",
    }
    extensions = {"persistedQuery": {"version": 1, "sha256Hash": PURCHASED_QUERY_HASH}}
    query = urllib.parse.urlencode({
        "operationName": PURCHASED_OPERATION,
        "variables": json.dumps(variables, separators=(",", ":")),
        "extensions": json.dumps(extensions, separators=(",", ":")),
    })
    data = api_request(f"{GRAPHQL_URL}?{query}", headers=auth_headers(tokens))
    game_list = ((data or {}).get("data") or {}).get("purchasedTitlesRetrieve") or {}
    return game_list.get("games") or []


def fetch_all_purchased(tokens, on_page=None, page_size=PURCHASED_PAGE_SIZE,
                        delay=PURCHASED_PAGE_DELAY):
    """Walk the purchased list by offset until a short or empty page.

    ``on_page(games, total)`` is called after every non-empty page.
    """
    purchased = []
    cursor = 0
    while True:
        games = get_purchased_games(tokens, start=cursor, size=page_size)
        if not games:
            break
        purchased.extend(games)
        if on_page:
            on_page(games, len(purchased))
        if len(games) < page_size:
            break
        cursor += page_size
        if delay:
            time.sleep(delay)
    return purchased


# ===========================================================================
# Trophy titles
# ===========================================================================

def get_user_titles(tokens, account_id):
    """Fetch the account's trophy titles list."""
    url = TROPHY_TITLES_URL.format(account_id=account_id) + "?" + urllib.parse.urlencode(
        {"limit": TITLES_LIMIT})
    data = api_request(url, headers=auth_headers(tokens))
    return (data or {}).get("trophyTitles") or []


# ===========================================================================
# Played games
# ===========================================================================

def get_user_played_games(tokens, account_id):
    """Fetch the raw played-games response (not normalized)."""
    url = PLAYED_GAMES_URL.format(account_id=account_id) + "?" + urllib.parse.urlencode(
        {"categories": PLAYED_CATEGORIES, "limit": PLAYED_LIMIT, "offset": 0})
    return api_request(url, headers=auth_headers(tokens))


def played_games_list(response):
    """The played endpoint may answer with a list or a {titles|items: [...]} object."""
    if isinstance(response, list):
        return response
    if isinstance(response, dict):
        return response.get("titles") or response.get("items") or []
    return []


def distill_played_games(raw_games):
    """Reduce raw played-game records to the fields the library keeps."""
    distilled = []
    for g in raw_games or []:
        concept = g.get("concept") or {}
        distilled.append({
            "titleId":      g.get("titleId"),
            "conceptId":    concept.get("id"),
            "name":         g.get("name"),
            "category":     g.get("category"),
            "genres":       concept.get("genres") or [],
            "images":       concept_images(concept),
            "playCount":    g.get("playCount"),
            "firstPlayed":  g.get("firstPlayedDateTime"),
            "lastPlayed":   g.get("lastPlayedDateTime"),
            "playDuration": g.get("playDuration"),
        })
    return distilled
