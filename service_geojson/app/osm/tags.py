"""
Tag normalization for administrative sub-areas.

Known keys are matched case-insensitively after trimming, synonyms are folded
into one canonical key, and a few values are canonicalized. Tags whose key is
not recognized pass through untouched, key and value alike.
"""

import re
from typing import Dict, Mapping, Optional, Tuple

_WHITESPACE_RE = re.compile(r"\s+")

# synonym -> canonical key
SYNONYMS: Dict[str, str] = {
    "admin-level": "admin_level",
    "adminlevel": "admin_level",
    "admin level": "admin_level",
    "addr:postcode": "postal_code",
    "postcode": "postal_code",
    "post_code": "postal_code",
    "iso3166_2": "iso3166-2",
    "iso_3166_2": "iso3166-2",
    "iso3166-1": "iso3166-1:alpha2",
    "iso3166_1": "iso3166-1:alpha2",
    "name:short": "short_name",
    "official-name": "official_name",
    "wiki_data": "wikidata",
}

CANONICAL_KEYS = frozenset(
    {
        "name",
        "official_name",
        "short_name",
        "alt_name",
        "old_name",
        "admin_level",
        "boundary",
        "type",
        "place",
        "population",
        "postal_code",
        "ref",
        "iso3166-2",
        "iso3166-1:alpha2",
        "wikidata",
        "wikipedia",
    }
)

_COLLAPSE_WHITESPACE = ("name", "official_name", "short_name", "alt_name", "old_name")
_LOWER_VALUES = ("boundary", "type", "place")


def canonical_key(key: str) -> Optional[str]:
    """Canonical form of a recognized key, or None for unrecognized keys."""
    folded = key.strip().lower()
    folded = SYNONYMS.get(folded, folded)
    if folded in CANONICAL_KEYS or folded.startswith("name:"):
        return folded
    return None


def normalize_value(key: str, value: str) -> str:
    value = value.strip()
    if key in _COLLAPSE_WHITESPACE or key.startswith("name:"):
        return _WHITESPACE_RE.sub(" ", value)
    if key in _LOWER_VALUES:
        return value.lower()
    return value


def normalize_tags(tags: Mapping[str, str]) -> Dict[str, str]:
    """Return a canonicalized copy of ``tags``.

    When several source keys fold onto the same canonical key, a key already
    spelled canonically wins; otherwise the lexicographically first source key
    does, so the result never depends on mapping order.
    """
    result: Dict[str, str] = {}
    sources: Dict[str, Tuple[int, str]] = {}
    for key in sorted(tags):
        value = tags[key]
        canonical = canonical_key(key)
        if canonical is None:
            result[key] = value
            continue
        rank = (0 if key == canonical else 1, key)
        if canonical in sources and sources[canonical] <= rank:
            continue
        sources[canonical] = rank
        result[canonical] = normalize_value(canonical, value)
    return result


def identity_key(tags: Mapping[str, str]) -> Optional[Tuple[str, str]]:
    """Merge-grouping key: normalized name plus admin level.

    Always computed from normalized tags, so raw and normalized runs group
    sub-areas identically. Unnamed sub-areas have no key and never merge.
    """
    normalized = normalize_tags(tags)
    name = normalized.get("name", "")
    if not name:
        return None
    return name.casefold(), normalized.get("admin_level", "")
