"""
PSN Library Merge
=================
Reconciles purchased games, trophy titles and played history into a single
de-duplicated library.

Each batch is folded into an IdentityIndex in order (purchased, then titles,
then played). A record is matched against the index by id first, then by the
concept's associated title ids, and finally by normalized name on a
compatible platform. Matching entries are updated in place; anything that
does not match becomes a new entry.

Demo, beta and trial records are dropped before any matching.
"""

import logging
import re

from psn_records import (
    SOURCE_PLAYED,
    SOURCE_PURCHASED,
    SOURCE_TITLES,
    CanonicalEntry,
    PlayedRecord,
    PurchasedRecord,
    TitleRecord,
    first_present,
)

log = logging.getLogger(__name__)

_TRADEMARK_RE = re.compile(r"\(TM\)|™|®", re.IGNORECASE)
_NON_ALNUM_RE = re.compile(r"[^A-Za-z0-9]+")
_DEMO_NAME_RE = re.compile(r"\b(demo|beta|trial version)\b", re.IGNORECASE)
_DEMO_ID_RE = re.compile(r"(DEMO\d+|DEMO)$", re.IGNORECASE)


# ===========================================================================
# Name normalization
# ===========================================================================

def normalized_name(name):
    """Comparison key: trademarks stripped, ASCII letters/digits only, lower-case.

    Edition words ("Remastered", "Definitive" ...) are kept, so "Game" and
    "Game: Remastered" stay distinct.
    """
    if not name:
        return ""
    key = _TRADEMARK_RE.sub("", str(name))
    key = _NON_ALNUM_RE.sub("", key)
    return key.lower().strip()


def display_name(name):
    """UI name: trademark glyphs removed, everything else untouched."""
    if not name:
        return ""
    return _TRADEMARK_RE.sub("", str(name)).strip()


# ===========================================================================
# Demo detection
# ===========================================================================

def is_demo(record):
    """True when a raw record is a demo, beta or trial version.

    Checks the best available name for the words, then productId and
    entitlementId for a trailing DEMO / DEMO00000 marker.
    """
    if not record or not isinstance(record, dict):
        return False

    name = first_present(record.get("name"), record.get("trophyTitleName"),
                         record.get("titleName")) or ""
    if _DEMO_NAME_RE.search(str(name)):
        log.debug("[DEMO FILTER] Name match found for: %s", name)
        return True

    pid = str(record.get("productId") or "")
    eid = str(record.get("entitlementId") or "")
    if _DEMO_ID_RE.search(pid) or _DEMO_ID_RE.search(eid):
        log.debug("[DEMO FILTER] ID pattern match found in: %s", pid or eid)
        return True

    return False


def without_demos(records, label):
    """Drop demo records from a batch, logging how many were removed."""
    records = list(records or [])
    kept = [r for r in records if not is_demo(r)]
    log.info("[FILTER STATS] Removed %d %s demos.", len(records) - len(kept), label)
    return kept


# ===========================================================================
# Platforms
# ===========================================================================

def resolve_platform(value):
    """Map a free-form platform string to 'ps5', 'ps4' or None."""
    if not value:
        return None
    value = str(value).lower()
    if "ps5" in value:
        return "ps5"
    if "ps4" in value:
        return "ps4"
    return None


def platform_of(item):
    """Resolved platform of a raw record dict, an input record or an entry.

    Raw dicts are read from platform, then trophyTitlePlatform, then category;
    the first non-empty field decides.
    """
    if item is None:
        return None
    if isinstance(item, dict):
        return resolve_platform(first_present(item.get("platform"),
                                              item.get("trophyTitlePlatform"),
                                              item.get("category")))
    return resolve_platform(getattr(item, "platform_hint", None))


def platforms_compatible(a, b):
    """Unknown platform on either side never blocks a merge."""
    pa = platform_of(a)
    pb = platform_of(b)
    if pa is None or pb is None:
        return True
    return pa == pb


def normalize_platform_casing(platform):
    if isinstance(platform, str) and platform.strip():
        return platform.upper()
    return platform


# ===========================================================================
# Identity index
# ===========================================================================

class IdentityIndex:
    """Canonical entries by storage key, in insertion order.

    Lookups always run against the live contents, so a record sees entries
    added earlier in the same batch.
    """

    def __init__(self):
        self._entries = {}

    def __len__(self):
        return len(self._entries)

    def __iter__(self):
        return iter(list(self._entries.values()))

    def __contains__(self, key):
        return self._key(key) in self._entries

    @staticmethod
    def _key(key):
        return "" if key is None else key

    def get(self, key):
        return self._entries.get(self._key(key))

    def keys(self):
        return list(self._entries)

    def put(self, key, entry):
        """Insert or overwrite; an overwritten key keeps its original position."""
        self._entries[self._key(key)] = entry

    def free_key(self, key):
        """``key`` when unused, else the first unused ``key#2``, ``key#3`` ..."""
        key = self._key(key)
        if key not in self._entries:
            return key
        n = 2
        while f"{key}#{n}" in self._entries:
            n += 1
        return f"{key}#{n}"

    def add(self, key, entry):
        """Insert without ever replacing an existing entry. Returns the key used."""
        key = self.free_key(key)
        self._entries[key] = entry
        return key

    def key_of(self, entry):
        for key, value in self._entries.items():
            if value is entry:
                return key
        return None

    def find_by_any_id(self, ids):
        """First entry holding any of ``ids`` (tried in order) as an identifier."""
        for candidate in ids or []:
            if not candidate:
                continue
            for entry in self._entries.values():
                if candidate in entry.ids:
                    return entry
        return None

    def find_by_concept(self, title_id):
        """First entry whose concept title id list contains ``title_id``."""
        if not title_id:
            return None
        for entry in self._entries.values():
            if title_id in entry.concept_title_ids:
                return entry
        return None

    def find_by_name(self, normalized, record):
        """First entry with the same normalized name on a compatible platform."""
        if not normalized:
            return None
        for entry in self._entries.values():
            if not entry.normalized_name or entry.normalized_name != normalized:
                continue
            if not platforms_compatible(entry, record):
                continue
            return entry
        return None


# ===========================================================================
# Folding
# ===========================================================================

def _refresh_derived(entry):
    entry.normalized_name = normalized_name(entry.name)
    entry.display_name = display_name(entry.name)
    entry.platform = normalize_platform_casing(entry.platform)


def _fill_ids(entry, record):
    entry.title_id = first_present(entry.title_id, record.title_id)
    entry.np_communication_id = first_present(entry.np_communication_id,
                                              record.np_communication_id)
    entry.product_id = first_present(entry.product_id, record.product_id)


def _match(index, record, step, merge_log):
    """Run the id -> concept -> name tiers and return (entry, tier).

    Trophy titles reach an entry through the entry's concept title ids;
    played records through their own concept's title ids.
    """
    entry = index.find_by_any_id(record.ids)
    if entry is not None:
        return entry, "id"

    if step == SOURCE_TITLES:
        entry = index.find_by_concept(record.title_id)
    else:
        entry = index.find_by_any_id(record.concept_title_ids)
    tier = "concept"
    if entry is None:
        entry = index.find_by_name(normalized_name(record.match_name), record)
        tier = "name"
    if entry is None:
        return None, None

    if merge_log is not None:
        merge_log.append({
            "step": step,
            "tier": tier,
            "record": record.match_name,
            "key": index.key_of(entry),
            "platform": entry.platform,
        })
    log.debug("%s: %s matched %r via %s", step, record.match_name, index.key_of(entry), tier)
    return entry, tier


def fold_purchased(index, records):
    """Seed the index from purchases; a repeated key keeps the later record."""
    for rec in records:
        entry = CanonicalEntry(
            title_id=rec.title_id,
            np_communication_id=rec.np_communication_id,
            product_id=rec.product_id,
            name=rec.name,
            platform=rec.platform,
            concept_id=rec.concept_id,
            concept_title_ids=list(rec.concept_title_ids),
            extra=dict(rec.extra),
        )
        entry.add_source(SOURCE_PURCHASED)
        _refresh_derived(entry)
        index.put(rec.key, entry)
    return index


def fold_titles(index, records, merge_log=None):
    """Fold trophy titles in; trophy name and progress win over existing data."""
    for rec in records:
        entry, _ = _match(index, rec, SOURCE_TITLES, merge_log)
        if entry is None:
            entry = CanonicalEntry()
            index.add(rec.key, entry)

        _fill_ids(entry, rec)
        entry.name = first_present(rec.trophy_title_name, entry.name, rec.title_name, rec.name)
        entry.trophies = rec.defined_trophies or entry.trophies
        if rec.progress is not None:
            entry.trophy_progress = rec.progress
        if not entry.images.get("cover") and rec.icon_url:
            entry.images["cover"] = rec.icon_url
        if rec.trophy_title_platform:
            entry.platform = rec.trophy_title_platform
        if not entry.concept_title_ids:
            entry.concept_title_ids = list(rec.concept_title_ids)

        _refresh_derived(entry)
        entry.add_source(SOURCE_TITLES)
    return index


def fold_played(index, records, merge_log=None):
    """Fold play history in; play stats take the incoming value when present."""
    for rec in records:
        entry, _ = _match(index, rec, SOURCE_PLAYED, merge_log)
        if entry is None:
            entry = CanonicalEntry()
            index.add(rec.key, entry)

        _fill_ids(entry, rec)
        entry.name = first_present(rec.name, rec.localized_name, entry.name, rec.title_name)
        if rec.play_count is not None:
            entry.play_count = rec.play_count
        entry.first_played = first_present(rec.first_played, entry.first_played)
        entry.last_played = first_present(rec.last_played, entry.last_played)
        entry.play_duration = first_present(rec.play_duration, entry.play_duration)

        for kind, url in rec.images.items():
            if kind == "cover" and entry.images.get("cover"):
                continue
            entry.images[kind] = url

        if rec.platform:
            entry.platform = rec.platform
        elif not entry.platform:
            entry.platform = platform_of(rec)

        entry.concept_id = first_present(entry.concept_id, rec.concept_id)
        if not entry.concept_title_ids:
            entry.concept_title_ids = list(rec.concept_title_ids)
        if not entry.genres:
            entry.genres = list(rec.genres)

        _refresh_derived(entry)
        entry.add_source(SOURCE_PLAYED)
    return index


def merge_entries(purchased, titles, played, merge_log=None):
    """Merge three raw batches and return the CanonicalEntry objects."""
    purchased = without_demos(purchased, "Purchased")
    titles = without_demos(titles, "Titles")
    played = without_demos(played, "Played")

    index = IdentityIndex()
    fold_purchased(index, [PurchasedRecord.from_dict(r) for r in purchased])
    fold_titles(index, [TitleRecord.from_dict(r) for r in titles], merge_log)
    fold_played(index, [PlayedRecord.from_dict(r) for r in played], merge_log)

    entries = list(index)
    for entry in entries:
        entry.platform = normalize_platform_casing(entry.platform)
    log.info("Merged %d purchased, %d titles, %d played into %d entries",
             len(purchased), len(titles), len(played), len(entries))
    return entries


def merge_library(purchased, titles, played, merge_log=None):
    """Merge three raw batches into the JSON-ready canonical library.

    When ``merge_log`` is a list, every concept or name-based match is
    appended to it as a dict.
    """
    return [e.to_dict() for e in merge_entries(purchased, titles, played, merge_log)]
