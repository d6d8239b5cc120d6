"""
Deterministic identifiers for Events, Classes and Schools.

Every identifier is derived from the natural key of the entity:

    evt_<school>_<category>[_<YYYYMMDD>]_<hash>
    cls_<school>[_<YYYYMMDD>]_<classname>_<hash>
    sch_<school>_<hash>

The readable slugs are lossy (two schools can slug to the same text), so the
trailing hash is computed over the *raw* pipe-joined key parts and keeps
such ids apart.

Important rules (DO NOT CHANGE without a migration):
- the event category is normalized BEFORE slugging and hashing, otherwise
  "MiniMusiker" and "Minimusikertag" produce two ids for the same event
- nothing in this module does I/O or raises on odd input
"""

from __future__ import annotations

import hashlib
import re
from collections import Counter
from typing import Any, Callable, Iterable, Mapping


EVENT_PREFIX = "evt"
CLASS_PREFIX = "cls"
SCHOOL_PREFIX = "sch"

SCHOOL_BOUND = 30
SCHOOL_ID_BOUND = 40
CATEGORY_BOUND = 20
CLASS_NAME_BOUND = 15

HASH_LENGTH = 6

CANONICAL_CATEGORY = "minimusiker"

# Spellings seen in the booking history for the same event category.
CATEGORY_SYNONYMS = {
    "minimusiker": CANONICAL_CATEGORY,
    "minimusikertag": CANONICAL_CATEGORY,
    "mini musiker": CANONICAL_CATEGORY,
    "mini-musiker": CANONICAL_CATEGORY,
    "mini musikertag": CANONICAL_CATEGORY,
    "minimusiker tag": CANONICAL_CATEGORY,
    "concert": CANONICAL_CATEGORY,
    "konzert": CANONICAL_CATEGORY,
}

_NON_ALNUM = re.compile(r"[^a-z0-9]")
_REPEATED_SEP = re.compile(r"_+")


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def _raw(value: Any) -> str:
    return "" if value is None else str(value)


def normalize_token(text: Any, bound: int) -> str:
    """
    Turn free text into a bounded `[a-z0-9_]` slug.

    Separators are trimmed again after truncation so that normalizing an
    already normalized token returns it unchanged.
    """
    slug = _NON_ALNUM.sub("_", _raw(text).lower())
    slug = _REPEATED_SEP.sub("_", slug).strip("_")
    return slug[:bound].strip("_")


def normalize_class_name(text: Any, bound: int = CLASS_NAME_BOUND) -> str:
    """
    Class names are short ("3a", "Year 5"), so they are squashed without separators.
    """
    return _NON_ALNUM.sub("", _raw(text).lower())[:bound]


def normalize_category(raw: Any) -> str:
    """
    Map an event category onto its canonical token.

    Blank input and every known MiniMusiker/concert spelling collapse onto
    CANONICAL_CATEGORY. Anything else is returned as its slug, so a
    genuinely different category still yields a different identifier.
    """
    text = " ".join(_raw(raw).lower().split())
    if not text:
        return CANONICAL_CATEGORY
    if text in CATEGORY_SYNONYMS:
        return CATEGORY_SYNONYMS[text]
    if "minimusik" in text or "mini musik" in text:
        return CANONICAL_CATEGORY
    return normalize_token(text, CATEGORY_BOUND) or CANONICAL_CATEGORY


def dominant_category(raw_categories: Iterable[Any]) -> str:
    """
    The normalized category a set of records converges to.

    Most common normalized category wins; on a tie the one seen first wins
    (Counter keeps insertion order and most_common sorts stably).
    """
    counts = Counter(normalize_category(c) for c in raw_categories)
    if not counts:
        return CANONICAL_CATEGORY
    return counts.most_common(1)[0][0]


def date_part(raw: Any) -> str:
    """
    Return the date portion of an ISO date or datetime string ("" if absent).
    """
    return _raw(raw).strip().split("T")[0]


def format_date_token(raw: Any) -> str:
    """
    '2026-03-10' or '2026-03-10T09:00:00.000Z' -> '20260310'.
    """
    return date_part(raw).replace("-", "")


def short_hash(*parts: Any) -> str:
    hash_input = "|".join(_raw(p) for p in parts)
    return hashlib.md5(hash_input.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def _join(prefix: str, *tokens: str) -> str:
    # empty tokens stay in place: "evt__minimusiker_..."
    return "_".join([prefix, *tokens])


# ---------------------------------------------------------------------------
# Generators
# ---------------------------------------------------------------------------


def generate_event_id(school_name: Any, category: Any, event_date: Any = None) -> str:
    """
    Build the canonical Event identifier.

    The hash input uses the raw school name and raw date string but the
    *normalized* category, matching the identifiers already in the store.
    """
    normalized_category = normalize_category(category)
    school_slug = normalize_token(school_name, SCHOOL_BOUND)
    category_slug = normalize_token(normalized_category, CATEGORY_BOUND)
    date_token = format_date_token(event_date)
    digest = short_hash(school_name, normalized_category, event_date)

    if date_token:
        return _join(EVENT_PREFIX, school_slug, category_slug, date_token, digest)
    return _join(EVENT_PREFIX, school_slug, category_slug, digest)


def generate_class_id(school_name: Any, event_date: Any, class_name: Any) -> str:
    school_slug = normalize_token(school_name, SCHOOL_BOUND)
    class_slug = normalize_class_name(class_name)
    date_token = format_date_token(event_date)
    digest = short_hash(school_name, event_date, class_name)

    if date_token:
        return _join(CLASS_PREFIX, school_slug, date_token, class_slug, digest)
    return _join(CLASS_PREFIX, school_slug, class_slug, digest)


def generate_school_id(school_name: Any) -> str:
    return _join(SCHOOL_PREFIX, normalize_token(school_name, SCHOOL_ID_BOUND), short_hash(school_name))


_GENERATORS: dict[str, Callable[[Mapping[str, Any]], str]] = {
    "event": lambda k: generate_event_id(k.get("school_name"), k.get("category"), k.get("event_date")),
    "class": lambda k: generate_class_id(k.get("school_name"), k.get("event_date"), k.get("class_name")),
    "school": lambda k: generate_school_id(k.get("school_name")),
}


def generate_id(kind: str, key_parts: Mapping[str, Any]) -> str:
    """
    Generic entry point: generate_id("event", {"school_name": ..., "category": ..., "event_date": ...}).

    Raises ValueError only for an unknown kind.
    """
    try:
        generator = _GENERATORS[kind]
    except KeyError:
        raise ValueError(f"Unknown entity kind: {kind!r}") from None
    return generator(key_parts)

