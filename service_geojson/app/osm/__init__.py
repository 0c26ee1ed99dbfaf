"""
OpenStreetMap package for the GeoJSON service.

- client: OSM API 0.6 relation fetcher with retry and error classification
- models: Relation / SubArea data models
- tags: tag normalization and merge identity keys
- geometry: way → polygon assembly and sub-area merging
- resolver: membership-graph traversal producing sub-areas
"""

from .client import OsmApiClient
from .geometry import build_area, merge_subareas
from .models import Member, Relation, ResolveResult, SubArea, Way
from .resolver import SubAreaResolver
from .tags import identity_key, normalize_tags

__all__ = [
    "OsmApiClient",
    "SubAreaResolver",
    "Member",
    "Relation",
    "ResolveResult",
    "SubArea",
    "Way",
    "build_area",
    "merge_subareas",
    "identity_key",
    "normalize_tags",
]
