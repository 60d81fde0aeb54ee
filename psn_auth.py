#!/usr/bin/env python3
"""
PSN Auth Helper
===============
Exchanges an NPSSO cookie for PlayStation Network access/refresh tokens,
persists them next to the online ID in psn_config.json, and refreshes the
access token when it has expired.

Get an NPSSO value by signing in at https://www.playstation.com and then
opening https://ca.account.sony.com/api/v1/ssocookie in the same browser.

Set PSN_ENCRYPTION_KEY (a Fernet key) to keep the stored tokens encrypted.

Usage:
  python psn_auth.py save <online_id> <npsso>   # Exchange NPSSO + save config
  python psn_auth.py refresh                     # Refresh tokens if expired
  python psn_auth.py status                      # Show token expiry
"""

import json
import logging
import os
import sys
import time
import urllib.error
import urllib.parse
import urllib.request

from cryptography.fernet import Fernet, InvalidToken

SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
DATA_DIR = os.environ.get("PSN_DATA_DIR", SCRIPT_DIR)
CONFIG_FILE = os.path.join(DATA_DIR, "psn_config.json")

# PlayStation App OAuth client (public mobile client)
AUTH_BASE = "https://ca.account.sony.com/api/authz/v3/oauth"
CLIENT_ID = "09515159-7237-4370-9b40-3806e67c0891"
CLIENT_BASIC_AUTH = "MDk1MTUxNTktNzIzNy00MzcwLTliNDAtMzgwNmU2N2MwODkxOnVjUGprYTV0bnRCMktxc1A="
REDIRECT_URI = "com.scee.psxandroid.scecompcall://redirect"
SCOPE = "psn:mobile.v2.core psn:clientapp"

PSN_ENCRYPTION_KEY = os.environ.get("PSN_ENCRYPTION_KEY", "")
_fernet = Fernet(PSN_ENCRYPTION_KEY.encode()) if PSN_ENCRYPTION_KEY else None

log = logging.getLogger(__name__)


class PSNAuthError(Exception):
    """Tokens could not be obtained or refreshed."""


# ---------------------------------------------------------------------------
# Config persistence
# ---------------------------------------------------------------------------

def _encrypt_tokens(tokens):
    return _fernet.encrypt(json.dumps(tokens).encode("utf-8")).decode("ascii")


def _decrypt_tokens(blob):
    return json.loads(_fernet.decrypt(blob.encode("ascii")).decode("utf-8"))


def save_config(cfg, path=None):
    """Write {username, tokens} to the config file, encrypting tokens if keyed."""
    path = path or CONFIG_FILE
    data = {"username": cfg.get("username")}
    tokens = cfg.get("tokens")
    if _fernet and tokens is not None:
        data["tokens_enc"] = _encrypt_tokens(tokens)
    else:
        data["tokens"] = tokens
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def load_config(path=None):
    """Read the config file. Returns {username, tokens} or None."""
    path = path or CONFIG_FILE
    if not os.path.isfile(path):
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if "tokens_enc" in data:
            if not _fernet:
                log.warning("Config tokens are encrypted but PSN_ENCRYPTION_KEY is not set")
                return None
            data["tokens"] = _decrypt_tokens(data.pop("tokens_enc"))
        return {"username": data.get("username"), "tokens": data.get("tokens")}
    except (json.JSONDecodeError, IOError, InvalidToken) as e:
        log.warning("Failed to read config: %s", e)
        return None


# ---------------------------------------------------------------------------
# Token expiry
# ---------------------------------------------------------------------------

def _now_ms():
    return int(time.time() * 1000)


def token_expires_at(tokens):
    """Epoch ms at which the access token expires (0 when unknown)."""
    if not tokens or not tokens.get("lastFetched") or not tokens.get("expiresIn"):
        return 0
    return tokens["lastFetched"] + tokens["expiresIn"] * 1000


def refresh_expires_at(tokens):
    if not tokens or not tokens.get("lastFetched") or not tokens.get("refreshTokenExpiresIn"):
        return 0
    return tokens["lastFetched"] + tokens["refreshTokenExpiresIn"] * 1000


def is_access_expired(tokens, now=None):
    return (now if now is not None else _now_ms()) >= token_expires_at(tokens)


def is_refresh_expired(tokens, now=None):
    return (now if now is not None else _now_ms()) >= refresh_expires_at(tokens)


# ---------------------------------------------------------------------------
# OAuth requests
# ---------------------------------------------------------------------------

class _NoRedirect(urllib.request.HTTPRedirectHandler):
    """Surface the authorize redirect instead of following it to the app scheme."""

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        return None


def _tokens_from_response(resp):
    """Map the OAuth token response to the stored camelCase shape."""
    return {
        "accessToken":           resp["access_token"],
        "expiresIn":             resp.get("expires_in"),
        "idToken":               resp.get("id_token"),
        "refreshToken":          resp.get("refresh_token"),
        "refreshTokenExpiresIn": resp.get("refresh_token_expires_in"),
        "scope":                 resp.get("scope"),
        "tokenType":             resp.get("token_type"),
        "lastFetched":           _now_ms(),
    }


def token_request(params):
    """Form-encoded POST to the token endpoint. Returns parsed JSON."""
    body = urllib.parse.urlencode(params).encode("utf-8")
    req = urllib.request.Request(f"{AUTH_BASE}/token", data=body, method="POST")
    req.add_header("Content-Type", "application/x-www-form-urlencoded")
    req.add_header("Authorization", f"Basic {CLIENT_BASIC_AUTH}")

    try:
        with urllib.request.urlopen(req, timeout=30) as resp:
            return json.loads(resp.read().decode("utf-8"))
    except urllib.error.HTTPError as e:
        error_body = e.read().decode("utf-8", errors="replace")
        log.error("HTTP %s from token endpoint: %s", e.code, error_body[:500])
        raise


def exchange_npsso_for_code(npsso):
    """Trade the NPSSO cookie for a one-time authorization code."""
    query = urllib.parse.urlencode({
        "access_type": "offline",
        "client_id": CLIENT_ID,
        "redirect_uri": REDIRECT_URI,
        "response_type": "code",
        "scope": SCOPE,
    })
    req = urllib.request.Request(f"{AUTH_BASE}/authorize?{query}")
    req.add_header("Cookie", f"npsso={npsso}")

    opener = urllib.request.build_opener(_NoRedirect)
    location = ""
    try:
        with opener.open(req, timeout=30) as resp:
            location = resp.headers.get("Location", "")
    except urllib.error.HTTPError as e:
        if e.code not in (301, 302, 303, 307):
            raise PSNAuthError(f"Authorize request failed: HTTP {e.code}") from e
        location = e.headers.get("Location", "")

    code = urllib.parse.parse_qs(urllib.parse.urlparse(location).query).get("code", [None])[0]
    if not code:
        raise PSNAuthError("No authorization code returned; is the NPSSO still valid?")
    return code


def exchange_code_for_tokens(code):
    resp = token_request({
        "code": code,
        "redirect_uri": REDIRECT_URI,
        "grant_type": "authorization_code",
        "token_format": "jwt",
    })
    return _tokens_from_response(resp)


def exchange_refresh_token(refresh_token):
    resp = token_request({
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
        "token_format": "jwt",
        "scope": SCOPE,
    })
    return _tokens_from_response(resp)


# ---------------------------------------------------------------------------
# High-level flows
# ---------------------------------------------------------------------------

def save_info(username, npsso, path=None):
    """Exchange an NPSSO for tokens and persist them with the online ID."""
    if not username or not npsso:
        raise PSNAuthError("username and npsso required.")
    code = exchange_npsso_for_code(npsso)
    tokens = exchange_code_for_tokens(code)
    cfg = {"username": username, "tokens": tokens}
    save_config(cfg, path)
    log.info("Saved tokens for %s", username)
    return cfg


def refresh_tokens_if_needed(cfg, path=None):
    """Return usable tokens for cfg, refreshing and persisting them if expired."""
    tokens = cfg.get("tokens") if cfg else None
    if not tokens:
        raise PSNAuthError("No tokens to refresh.")
    if not is_access_expired(tokens):
        return tokens

    log.info("Access token expired, attempting refresh with refresh token...")
    if not tokens.get("refreshToken"):
        raise PSNAuthError("No refreshToken present to refresh.")
    if is_refresh_expired(tokens):
        raise PSNAuthError("Refresh token expired, please save info again with a fresh NPSSO.")

    try:
        new_tokens = exchange_refresh_token(tokens["refreshToken"])
    except (urllib.error.URLError, KeyError, ValueError) as e:
        raise PSNAuthError(f"Token refresh failed: {e}") from e

    log.info("Token refresh succeeded, storing updated tokens.")
    save_config({"username": cfg.get("username"), "tokens": new_tokens}, path)
    cfg["tokens"] = new_tokens
    return new_tokens


def token_age_str(tokens, now=None):
    """Human-readable time until the access token expires."""
    remaining = (token_expires_at(tokens) - (now if now is not None else _now_ms())) / 1000
    if remaining <= 0:
        return "expired"
    if remaining < 3600:
        return f"{int(remaining // 60)}m left"
    return f"{remaining / 3600:.1f}h left"


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)

    cmd = sys.argv[1].lower()
    try:
        if cmd == "save" and len(sys.argv) == 4:
            save_info(sys.argv[2], sys.argv[3])
            print(f"[+] Saved tokens for {sys.argv[2]} to {CONFIG_FILE}")
        elif cmd == "refresh":
            cfg = load_config()
            tokens = refresh_tokens_if_needed(cfg)
            print(f"[+] Access token valid ({token_age_str(tokens)})")
        elif cmd == "status":
            cfg = load_config()
            if not cfg or not cfg.get("tokens"):
                print("[!] No config found. Run: python psn_auth.py save <online_id> <npsso>")
                sys.exit(1)
            print(f"  Online ID: {cfg['username']}")
            print(f"  Access token: {token_age_str(cfg['tokens'])}")
        else:
            print(__doc__)
            sys.exit(1)
    except PSNAuthError as e:
        print(f"[!] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
