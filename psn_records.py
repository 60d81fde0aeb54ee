"""
PSN Library Records
===================
Typed views over the three raw PSN record shapes (purchased, trophy titles,
played history) and the canonical library entry they are merged into.

Raw API payloads spell the same thing several ways (``firstPlayed`` vs
``firstPlayedDateTime``, ``name`` vs ``localizedName`` ...). Each record class
resolves those once in ``from_dict`` so the merge code only ever reads plain
attributes.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

SOURCE_PURCHASED = "purchased"
SOURCE_TITLES = "titles"
SOURCE_PLAYED = "played"

# Concept media image type -> canonical image kind
IMAGE_KINDS = {
    "GAMEHUB_COVER_ART": "cover",
    "MASTER":            "master",
    "HERO_CHARACTER":    "hero",
}


def first_present(*values):
    """Return the first value that is neither None nor an empty string."""
    for value in values:
        if value is None:
            continue
        if isinstance(value, str) and value == "":
            continue
        return value
    return None


def _as_dict(value):
    return value if isinstance(value, dict) else {}


def _as_list(value):
    return list(value) if isinstance(value, (list, tuple)) else []


def concept_images(concept):
    """Collect cover/master/hero URLs from a concept's ``media.images`` list."""
    images = {}
    for img in _as_list(_as_dict(_as_dict(concept).get("media")).get("images")):
        kind = IMAGE_KINDS.get(_as_dict(img).get("type"))
        if kind and img.get("url"):
            images[kind] = img["url"]
    return images


# ---------------------------------------------------------------------------
# Input variants
# ---------------------------------------------------------------------------

@dataclass
class PurchasedRecord:
    title_id: Optional[str] = None
    np_communication_id: Optional[str] = None
    product_id: Optional[str] = None
    entitlement_id: Optional[str] = None
    name: Optional[str] = None
    platform: Optional[str] = None
    concept_id: Optional[Any] = None
    concept_title_ids: List[str] = field(default_factory=list)
    # Everything else the store sent (image, isPreOrder, membership ...)
    extra: Dict[str, Any] = field(default_factory=dict)

    # entitlementId stays in extra so it is persisted with the entry
    _KNOWN = ("titleId", "npCommunicationId", "productId",
              "name", "platform", "conceptId", "concept")

    @classmethod
    def from_dict(cls, raw):
        raw = _as_dict(raw)
        concept = _as_dict(raw.get("concept"))
        return cls(
            title_id=first_present(raw.get("titleId")),
            np_communication_id=first_present(raw.get("npCommunicationId")),
            product_id=first_present(raw.get("productId")),
            entitlement_id=first_present(raw.get("entitlementId")),
            name=first_present(raw.get("name")),
            platform=first_present(raw.get("platform")),
            concept_id=first_present(raw.get("conceptId"), concept.get("id")),
            concept_title_ids=_as_list(concept.get("titleIds")),
            extra={k: v for k, v in raw.items() if k not in cls._KNOWN},
        )

    @property
    def key(self):
        return first_present(self.title_id, self.np_communication_id,
                             self.product_id, self.name)


@dataclass
class TitleRecord:
    np_communication_id: Optional[str] = None
    title_id: Optional[str] = None
    product_id: Optional[str] = None
    trophy_title_name: Optional[str] = None
    title_name: Optional[str] = None
    name: Optional[str] = None
    trophy_title_platform: Optional[str] = None
    progress: Optional[int] = None
    defined_trophies: Optional[Dict[str, int]] = None
    icon_url: Optional[str] = None
    concept_title_ids: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw):
        raw = _as_dict(raw)
        return cls(
            np_communication_id=first_present(raw.get("npCommunicationId")),
            title_id=first_present(raw.get("titleId")),
            product_id=first_present(raw.get("productId")),
            trophy_title_name=first_present(raw.get("trophyTitleName")),
            title_name=first_present(raw.get("titleName")),
            name=first_present(raw.get("name")),
            trophy_title_platform=first_present(raw.get("trophyTitlePlatform")),
            progress=raw.get("progress"),
            defined_trophies=raw.get("definedTrophies") or None,
            icon_url=first_present(raw.get("trophyTitleIconUrl")),
            concept_title_ids=_as_list(_as_dict(raw.get("concept")).get("titleIds")),
        )

    @property
    def ids(self):
        return [i for i in (self.np_communication_id, self.title_id, self.product_id) if i]

    @property
    def match_name(self):
        return first_present(self.trophy_title_name, self.title_name, self.name)

    @property
    def platform_hint(self):
        return self.trophy_title_platform

    @property
    def key(self):
        return first_present(self.np_communication_id, self.title_id, self.product_id,
                             self.trophy_title_name, self.title_name, self.name)


@dataclass
class PlayedRecord:
    title_id: Optional[str] = None
    np_communication_id: Optional[str] = None
    product_id: Optional[str] = None
    name: Optional[str] = None
    localized_name: Optional[str] = None
    title_name: Optional[str] = None
    platform: Optional[str] = None
    category: Optional[str] = None
    play_count: Optional[int] = None
    first_played: Optional[str] = None
    last_played: Optional[str] = None
    play_duration: Optional[str] = None
    concept_id: Optional[Any] = None
    concept_title_ids: List[str] = field(default_factory=list)
    genres: List[str] = field(default_factory=list)
    images: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw):
        """Accept both the raw gamelist payload and a distilled played record."""
        raw = _as_dict(raw)
        concept = _as_dict(raw.get("concept"))
        images = {k: v for k, v in _as_dict(raw.get("images")).items()
                  if k in IMAGE_KINDS.values() and v}
        if not images:
            images = concept_images(concept)
        return cls(
            title_id=first_present(raw.get("titleId")),
            np_communication_id=first_present(raw.get("npCommunicationId")),
            product_id=first_present(raw.get("productId")),
            name=first_present(raw.get("name")),
            localized_name=first_present(raw.get("localizedName")),
            title_name=first_present(raw.get("titleName")),
            platform=first_present(raw.get("platform")),
            category=first_present(raw.get("category")),
            play_count=raw.get("playCount"),
            first_played=first_present(raw.get("firstPlayed"), raw.get("firstPlayedDateTime")),
            last_played=first_present(raw.get("lastPlayed"), raw.get("lastPlayedDateTime")),
            play_duration=first_present(raw.get("playDuration")),
            concept_id=first_present(raw.get("conceptId"), concept.get("id")),
            concept_title_ids=_as_list(concept.get("titleIds")),
            genres=_as_list(raw.get("genres")) or _as_list(concept.get("genres")),
            images=images,
        )

    @property
    def ids(self):
        return [i for i in (self.title_id, self.np_communication_id, self.product_id) if i]

    @property
    def match_name(self):
        return first_present(self.name, self.title_name, self.localized_name)

    @property
    def platform_hint(self):
        return first_present(self.platform, self.category)

    @property
    def key(self):
        return first_present(self.title_id, self.np_communication_id, self.product_id,
                             self.name, self.localized_name, self.title_name)


# ---------------------------------------------------------------------------
# Canonical entry
# ---------------------------------------------------------------------------

@dataclass
class CanonicalEntry:
    title_id: Optional[str] = None
    np_communication_id: Optional[str] = None
    product_id: Optional[str] = None
    name: Optional[str] = None
    normalized_name: str = ""
    display_name: str = ""
    platform: Optional[str] = None
    trophies: Optional[Dict[str, int]] = None
    trophy_progress: Optional[int] = None
    play_count: Optional[int] = None
    first_played: Optional[str] = None
    last_played: Optional[str] = None
    play_duration: Optional[str] = None
    images: Dict[str, str] = field(default_factory=dict)
    concept_id: Optional[Any] = None
    concept_title_ids: List[str] = field(default_factory=list)
    genres: List[str] = field(default_factory=list)
    source: List[str] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    # attribute -> serialised key, in output order
    _FIELDS = (
        ("title_id",            "titleId"),
        ("np_communication_id", "npCommunicationId"),
        ("product_id",          "productId"),
        ("name",                "name"),
        ("normalized_name",     "normalizedName"),
        ("display_name",        "displayName"),
        ("platform",            "platform"),
        ("trophies",            "trophies"),
        ("trophy_progress",     "trophyProgress"),
        ("play_count",          "playCount"),
        ("first_played",        "firstPlayed"),
        ("last_played",         "lastPlayed"),
        ("play_duration",       "playDuration"),
        ("images",              "images"),
        ("concept_id",          "conceptId"),
        ("concept_title_ids",   "conceptTitleIds"),
        ("genres",              "genres"),
        ("source",              "source"),
    )

    def add_source(self, source):
        if source not in self.source:
            self.source.append(source)

    @property
    def ids(self):
        return (self.title_id, self.np_communication_id, self.product_id)

    @property
    def platform_hint(self):
        return self.platform

    def to_dict(self):
        """Serialise to the persisted JSON shape; unset fields are left out."""
        out = {k: v for k, v in self.extra.items() if v is not None}
        for attr, key in self._FIELDS:
            value = getattr(self, attr)
            if isinstance(value, dict):
                value = {k: v for k, v in value.items() if v is not None}
            elif isinstance(value, list):
                value = list(value)
            if value is None or (value in ({}, []) and key != "source"):
                continue
            out[key] = value
        return out
