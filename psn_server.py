#!/usr/bin/env python3
"""
PSN Library Server
==================
Local web front end for the library tracker.
Serves the HTML preview of full_library.json and exposes the save-info and
fetch actions over a small JSON API.

Usage:
    pip install -e .
    python psn_server.py                          # http://127.0.0.1:5001

    # Re-merge from saved raw files without hitting PSN:
    flask --app psn_server merge
"""

import gzip
import logging
import os
import threading
from collections import deque

import click
from flask import Flask, Response, jsonify, request

import psn_auth
import psn_library
from psn_html import build_html

# ---------------------------------------------------------------------------
# App setup
# ---------------------------------------------------------------------------

app = Flask(__name__)

SERVER_PORT = int(os.environ.get("PSN_SERVER_PORT", "5001"))
STATUS_HISTORY = 200

# Fetch/merge runs are serialized; a second concurrent fetch is rejected
_run_lock = threading.Lock()
_status_lines = deque(maxlen=STATUS_HISTORY)

log = logging.getLogger(__name__)


def _record_status(text):
    _status_lines.append(text)


psn_library.add_status_listener(_record_status)


# ---------------------------------------------------------------------------
# Index page
# ---------------------------------------------------------------------------

@app.route("/")
def index():
    """Serve the preview page for the current library file."""
    try:
        library = psn_library.load_library()
    except (OSError, ValueError) as e:
        return Response(f"Error reading library: {e}", status=500,
                        content_type="text/plain")
    html = build_html(library)

    if "gzip" in request.headers.get("Accept-Encoding", ""):
        return Response(gzip.compress(html.encode("utf-8"), compresslevel=6), status=200, headers={
            "Content-Type": "text/html; charset=utf-8",
            "Content-Encoding": "gzip",
            "Cache-Control": "no-cache",
        })
    return Response(html, status=200, headers={
        "Content-Type": "text/html; charset=utf-8",
        "Cache-Control": "no-cache",
    })


# ---------------------------------------------------------------------------
# JSON API
# ---------------------------------------------------------------------------

@app.route("/api/library")
def library_get():
    try:
        return jsonify(psn_library.load_library())
    except (OSError, ValueError) as e:
        return jsonify(error=f"Library file unreadable: {e}"), 500


@app.route("/api/status")
def status_get():
    return jsonify(lines=list(_status_lines), running=_run_lock.locked())


@app.route("/api/save-info", methods=["POST"])
def save_info():
    """Exchange an NPSSO for tokens and store them with the online ID."""
    data = request.get_json(silent=True) or {}
    username = (data.get("username") or "").strip()
    npsso = (data.get("npsso") or "").strip()
    if not username or not npsso:
        psn_library.append_status("ERROR: username and npsso required.")
        return jsonify(error="username and npsso required"), 400

    try:
        psn_auth.save_info(username, npsso)
    except psn_auth.PSNAuthError as e:
        psn_library.append_status(f"Save info failed: {e}")
        return jsonify(error=str(e)), 400
    except OSError as e:
        log.error("Save info failed: %s", e)
        psn_library.append_status(f"Save info failed: {e}")
        return jsonify(error=str(e)), 502

    psn_library.append_status(f"Saved info for {username}.")
    return jsonify(ok=True, username=username)


@app.route("/api/fetch", methods=["POST"])
def fetch_library():
    """Run a full fetch + merge. Only one run at a time."""
    if not _run_lock.acquire(blocking=False):
        return jsonify(error="A fetch is already running"), 409
    try:
        library = psn_library.fetch_full_library()
        if library is not None:
            psn_library.write_preview(library)
    finally:
        _run_lock.release()

    if library is None:
        return jsonify(error="Fetch failed", status=list(_status_lines)[-5:]), 502
    return jsonify(ok=True, count=len(library))


# ---------------------------------------------------------------------------
# CLI: flask --app psn_server merge
# ---------------------------------------------------------------------------

@app.cli.command("merge")
@click.option("--html/--no-html", default=True, help="Rebuild the HTML preview too.")
def merge_command(html):
    """Re-run the merge from saved raw files."""
    with _run_lock:
        try:
            library = psn_library.merge_from_raw()
        except (OSError, ValueError) as e:
            click.echo(f"[!] Error: {e}", err=True)
            raise SystemExit(1)
        if html:
            psn_library.write_preview(library)
    click.echo(f"[+] Merged library: {len(library)} entries")


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    app.run(host="127.0.0.1", port=SERVER_PORT)
