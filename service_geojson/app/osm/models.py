"""
Data models for OpenStreetMap relations and the sub-areas derived from them.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from shapely.geometry.base import BaseGeometry

from shared.errors import GeoJSONError

Coordinate = Tuple[float, float]  # (lon, lat)
IdentityKey = Tuple[str, str]


@dataclass(frozen=True)
class Member:
    """A typed reference from a relation to another element."""
    type: str  # "relation" | "way" | "node"
    ref: int
    role: str = ""


@dataclass(frozen=True)
class Way:
    """A way with its node coordinates resolved, in node order."""
    id: int
    coords: Tuple[Coordinate, ...] = ()


@dataclass
class Relation:
    """
    A relation as returned by the upstream ``/full`` endpoint.

    Attributes:
        id:       Relation id.
        tags:     Raw tag mapping, exactly as upstream returned it.
        members:  Ordered member references.
        ways:     Ways referenced by this relation, keyed by id, with the
                  coordinates of their nodes.
        nodes:    Coordinates of node members, keyed by id.
    """
    id: int
    tags: Dict[str, str] = field(default_factory=dict)
    members: List[Member] = field(default_factory=list)
    ways: Dict[int, Way] = field(default_factory=dict)
    nodes: Dict[int, Coordinate] = field(default_factory=dict)

    def child_relation_ids(self) -> List[int]:
        """Relation members, in member order, without duplicates."""
        seen = set()
        ids = []
        for member in self.members:
            if member.type == "relation" and member.ref not in seen:
                seen.add(member.ref)
                ids.append(member.ref)
        return ids

    def way_members(self) -> List[Tuple[Way, str]]:
        """Resolved way members with their roles, in member order."""
        return [
            (self.ways[m.ref], m.role)
            for m in self.members
            if m.type == "way" and m.ref in self.ways
        ]


@dataclass
class SubArea:
    """
    A resolved sub-area ready for serialization.

    ``member_ids`` lists the relations folded into this record: just ``[id]``
    for an unmerged sub-area, every group member (ascending) after merging.
    """
    id: int
    tags: Dict[str, str]
    geometry: BaseGeometry
    identity_key: Optional[IdentityKey] = None
    parent_id: Optional[int] = None
    depth: int = 1
    member_ids: List[int] = field(default_factory=list)
    merged: bool = False

    def __post_init__(self):
        if not self.member_ids:
            self.member_ids = [self.id]


@dataclass
class ResolveResult:
    """Outcome of resolving one root relation."""
    root: Relation
    subareas: List[SubArea] = field(default_factory=list)
    failures: List[GeoJSONError] = field(default_factory=list)
    cycles: List[GeoJSONError] = field(default_factory=list)
    # (relation_id, parent_id) of references to a sub-area claimed by another parent
    shared: List[Tuple[int, int]] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.failures)

    def summary(self) -> Dict[str, Any]:
        return {
            "root_id": self.root.id,
            "subareas": len(self.subareas),
            "failures": [f.message for f in self.failures],
            "cycles": len(self.cycles),
            "shared": len(self.shared),
        }
