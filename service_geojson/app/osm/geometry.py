"""
Area geometry assembly and sub-area merging.

Ways are turned into polygons with Shapely: ``outer`` ways are polygonized into
shells, ``inner`` ways into holes that are attached to the shell containing
them. Merging never unions or dissolves rings, it only collects polygons into
a MultiPolygon so overlapping input stays as the data provides it.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from shapely.geometry import LineString, MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry
from shapely.ops import polygonize

from .models import IdentityKey, Relation, SubArea, Way

OUTER_ROLES = ("outer", "")
INNER_ROLES = ("inner",)


def _polygonize(ways: Iterable[Way]) -> List[Polygon]:
    lines = [LineString(way.coords) for way in ways if len(way.coords) >= 2]
    if not lines:
        return []
    shells = [Polygon(p.exterior) for p in polygonize(lines) if not p.is_empty]
    return sorted(shells, key=lambda p: p.bounds)


def build_area(relation: Relation) -> Optional[BaseGeometry]:
    """Polygon or MultiPolygon for a relation's way members, None if none forms."""
    members = relation.way_members()
    shells = _polygonize(way for way, role in members if role in OUTER_ROLES)
    if not shells:
        return None
    holes = _polygonize(way for way, role in members if role in INNER_ROLES)

    polygons = []
    for shell in shells:
        interiors = []
        for hole in holes:
            if shell.contains(hole):
                interiors.append(hole.exterior.coords)
        polygons.append(Polygon(shell.exterior.coords, interiors))

    if len(polygons) == 1:
        return polygons[0]
    return MultiPolygon(polygons)


def polygons_of(geometry: BaseGeometry) -> List[Polygon]:
    if isinstance(geometry, Polygon):
        return [geometry]
    if isinstance(geometry, MultiPolygon):
        return list(geometry.geoms)
    raise TypeError(f"expected Polygon or MultiPolygon, got {geometry.geom_type}")


def _combine(group: List[SubArea]) -> SubArea:
    first = group[0]
    polygons: List[Polygon] = []
    for subarea in group:
        polygons.extend(polygons_of(subarea.geometry))
    return SubArea(
        id=first.id,
        tags=dict(first.tags),
        geometry=MultiPolygon(polygons),
        identity_key=first.identity_key,
        parent_id=first.parent_id,
        depth=first.depth,
        member_ids=[s.id for s in group],
        merged=True,
    )


def merge_subareas(subareas: Iterable[SubArea], combine: bool) -> List[SubArea]:
    """Group sub-areas by identity key when ``combine`` is set.

    Members are processed in ascending relation id, so the merged record takes
    the tags of the lowest id and its polygons are ordered by source id, which
    makes the result independent of input order. A group of one is still
    wrapped as a merged MultiPolygon. Sub-areas without an identity key form
    groups of their own.
    """
    ordered = sorted(subareas, key=lambda s: s.id)
    if not combine:
        return ordered

    groups: Dict[IdentityKey, List[SubArea]] = {}
    singles: List[List[SubArea]] = []
    for subarea in ordered:
        if subarea.identity_key is None:
            singles.append([subarea])
        else:
            groups.setdefault(subarea.identity_key, []).append(subarea)

    merged = [_combine(group) for group in list(groups.values()) + singles]
    return sorted(merged, key=lambda s: s.id)
