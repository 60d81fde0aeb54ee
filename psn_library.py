#!/usr/bin/env python3
"""
PSN Library Tracker
===================
Fetches your PlayStation purchases, trophy titles and play history, merges
them into one de-duplicated library (full_library.json) and builds a
self-contained HTML preview page.

Raw API responses are kept next to the merged output so the merge can be
re-run offline.

Requirements:
  - Python 3.8+
  - pip install -e .

Usage:
  python psn_library.py save <online_id> <npsso>   # Exchange NPSSO + save config
  python psn_library.py fetch                       # Fetch, merge, save, build HTML
  python psn_library.py merge                       # Re-merge from saved raw files
  python psn_library.py html                        # Rebuild HTML from full_library.json
"""

import json
import logging
import os
import sys
import time
import webbrowser

import psn_api
import psn_auth
from psn_html import build_html
from psn_merge import merge_library

# ---------------------------------------------------------------------------
# Paths - everything under the data directory
# ---------------------------------------------------------------------------
DATA_DIR = psn_auth.DATA_DIR

PROFILE_RAW      = "profile_data_raw.json"
PLAYED_RAW       = "get_user_played_raw.json"
PLAYED_DISTILLED = "get_user_played.json"
PURCHASED_RAW    = "get_purchased_raw.json"
TITLES_RAW       = "get_user_titles_raw.json"
FULL_LIBRARY     = "full_library.json"
MERGE_LOG        = "merge_log.json"
OUTPUT_HTML      = "full_library.html"

log = logging.getLogger(__name__)

_status_listeners = []


def data_path(filename):
    return os.path.join(DATA_DIR, filename)


# ===========================================================================
# Helper utilities
# ===========================================================================

def add_status_listener(callback):
    """Register callback(text) to receive every status line."""
    _status_listeners.append(callback)


def remove_status_listener(callback):
    if callback in _status_listeners:
        _status_listeners.remove(callback)


def append_status(text):
    """Report a progress line to the log and any registered listeners."""
    log.info(text)
    for callback in list(_status_listeners):
        callback(text)


def save_json(filepath, data):
    """Write data to a JSON file."""
    with open(filepath, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)


def load_json(filepath):
    """Load data from a JSON file."""
    with open(filepath, "r", encoding="utf-8") as f:
        return json.load(f)


def write_raw(filename, data):
    """Persist a raw response; a failed write is reported, not fatal."""
    try:
        save_json(data_path(filename), data)
    except (OSError, TypeError, ValueError) as e:
        append_status(f"Failed to write {filename}: {e}")


def append_purchased_page(page):
    """Append one purchased page to the raw purchased file."""
    path = data_path(PURCHASED_RAW)
    current = []
    if os.path.isfile(path):
        try:
            current = load_json(path) or []
        except (OSError, ValueError):
            append_status("Warning: failed to read existing purchased file, overwriting.")
            current = []
    write_raw(PURCHASED_RAW, current + list(page))


def load_library(filename=FULL_LIBRARY):
    """Load the merged library, or [] when it hasn't been built yet."""
    path = data_path(filename)
    if not os.path.isfile(path):
        return []
    return load_json(path)


# ===========================================================================
# Fetch + merge
# ===========================================================================

def merge_and_save(purchased, titles, played):
    """Merge three batches and persist the library and merge log."""
    append_status("Merging library...")
    merge_log = []
    library = merge_library(purchased, titles, played, merge_log=merge_log)
    write_raw(FULL_LIBRARY, library)
    write_raw(MERGE_LOG, merge_log)
    append_status(f"Full library saved: {len(library)} entries "
                  f"({len(merge_log)} fallback matches)")
    return library


def fetch_full_library():
    """Fetch all three sources, merge them and save the result.

    Returns the merged library, or None when anything fails (the reason is
    reported through append_status).
    """
    cfg = psn_auth.load_config()
    if not cfg or not cfg.get("tokens") or not cfg.get("username"):
        append_status("No config found. Use Save Info first.")
        return None

    try:
        tokens = psn_auth.refresh_tokens_if_needed(cfg)
    except psn_auth.PSNAuthError as e:
        append_status(f"Fetch full library failed: {e}")
        return None

    profile = psn_api.get_profile_from_username(tokens, cfg["username"])
    write_raw(PROFILE_RAW, profile)
    account_id = psn_api.account_id_from_profile(profile)
    if not account_id:
        append_status("Cannot fetch library: missing accountId.")
        return None

    append_status("Fetching purchased games...")
    try:
        os.remove(data_path(PURCHASED_RAW))
    except FileNotFoundError:
        pass

    def on_page(games, total):
        append_purchased_page(games)
        append_status(f"Purchased batch: {len(games)} items (total {total})")

    purchased = psn_api.fetch_all_purchased(tokens, on_page=on_page)
    append_status(f"Purchased fetch complete. Total items: {len(purchased)}")

    append_status("Fetching user titles...")
    titles = psn_api.get_user_titles(tokens, account_id)
    write_raw(TITLES_RAW, titles)
    append_status(f"Titles saved: {len(titles)}")

    append_status("Fetching played games...")
    played_resp = psn_api.get_user_played_games(tokens, account_id)
    write_raw(PLAYED_RAW, played_resp)
    played = psn_api.played_games_list(played_resp)
    write_raw(PLAYED_DISTILLED, psn_api.distill_played_games(played))
    append_status(f"Played games fetched: {len(played)}")

    return merge_and_save(purchased, titles, played)


def merge_from_raw():
    """Re-run the merge from the raw files saved by the last fetch."""
    def _load(filename):
        path = data_path(filename)
        if not os.path.isfile(path):
            append_status(f"Missing {filename}, treating as empty.")
            return []
        return load_json(path)

    purchased = _load(PURCHASED_RAW)
    titles = _load(TITLES_RAW)
    played = psn_api.played_games_list(_load(PLAYED_RAW))
    return merge_and_save(purchased, titles, played)


def write_preview(library):
    """Write the HTML preview and return its path."""
    path = data_path(OUTPUT_HTML)
    html = build_html(library)
    with open(path, "w", encoding="utf-8") as f:
        f.write(html)
    size_kb = len(html.encode("utf-8")) / 1024
    append_status(f"Saved {path} ({size_kb:.0f} KB)")
    return path


def print_summary(library):
    plat_counts = {}
    for item in library:
        plat = item.get("platform") or "Unknown"
        plat_counts[plat] = plat_counts.get(plat, 0) + 1
    print()
    print(f"  Library entries: {len(library)}")
    for plat, count in sorted(plat_counts.items(), key=lambda kv: -kv[1]):
        print(f"    {plat:<12} {count}")
    with_trophies = sum(1 for x in library if "titles" in x.get("source", []))
    played = sum(1 for x in library if "played" in x.get("source", []))
    print(f"  With trophy data: {with_trophies}")
    print(f"  With play history: {played}")
    print()


# ===========================================================================
# Main entry point
# ===========================================================================

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
    start_time = time.time()

    if cmd == "save":
        if len(sys.argv) != 4:
            print("Usage: psn_library.py save <online_id> <npsso>")
            sys.exit(1)
        try:
            psn_auth.save_info(sys.argv[2], sys.argv[3])
        except psn_auth.PSNAuthError as e:
            print(f"[!] ERROR: {e}")
            sys.exit(1)
        print(f"[+] Saved info for {sys.argv[2]}")
        return

    if cmd == "fetch":
        library = fetch_full_library()
    elif cmd == "merge":
        library = merge_from_raw()
    elif cmd == "html":
        library = load_library()
        if not library:
            print(f"[!] {FULL_LIBRARY} not found or empty. Run fetch first.")
            sys.exit(1)
    else:
        print(f"Unknown command: {cmd}")
        print("Usage: psn_library.py [save|fetch|merge|html]")
        sys.exit(1)

    if library is None:
        sys.exit(1)

    print_summary(library)
    path = write_preview(library)
    print(f"  Completed in {time.time() - start_time:.1f}s")

    if "--open" in sys.argv:
        file_url = "file:///" + path.replace("\\", "/").replace(" ", "%20")
        print(f"[*] Opening in browser: {file_url}")
        webbrowser.open(file_url)


if __name__ == "__main__":
    main()
