"""
GeoJSON serialization of resolved sub-areas.

Output is byte-stable: features are ordered by relation id and keys are
sorted, so the same sub-areas always serialize to the same bytes.
"""

import json
from typing import Any, Dict, Iterable, List

from shapely.geometry import mapping

from shared.errors import SerializationError

from ..osm.models import SubArea

AREA_TYPES = ("Polygon", "MultiPolygon")


def relation_ref(relation_id: int) -> str:
    return f"relation/{relation_id}"


def to_feature(subarea: SubArea) -> Dict[str, Any]:
    geometry = subarea.geometry
    if geometry is None or geometry.geom_type not in AREA_TYPES:
        raise SerializationError(
            f"sub-area {subarea.id} has no area geometry",
            {"relation_id": subarea.id},
        )
    if geometry.is_empty:
        raise SerializationError(f"sub-area {subarea.id} has empty geometry", {"relation_id": subarea.id})

    properties: Dict[str, Any] = dict(subarea.tags)
    properties["@id"] = relation_ref(subarea.id)
    if subarea.merged:
        properties["@relations"] = [relation_ref(i) for i in subarea.member_ids]

    return {
        "type": "Feature",
        "id": relation_ref(subarea.id),
        "properties": properties,
        "geometry": mapping(geometry),
    }


def feature_collection(subareas: Iterable[SubArea]) -> Dict[str, Any]:
    features: List[Dict[str, Any]] = [
        to_feature(s) for s in sorted(subareas, key=lambda s: s.id)
    ]
    return {"type": "FeatureCollection", "features": features}


def dumps(subareas: Iterable[SubArea], *, indent: Any = None) -> bytes:
    """Serialize sub-areas to UTF-8 GeoJSON bytes.

    Raises:
        SerializationError: a geometry is missing, empty, not an area, or
            has non-finite coordinates.
    """
    collection = feature_collection(subareas)
    try:
        text = json.dumps(
            collection,
            ensure_ascii=False,
            sort_keys=True,
            allow_nan=False,
            indent=indent,
            separators=(",", ":") if indent is None else None,
        )
    except (TypeError, ValueError) as exc:
        raise SerializationError(f"could not encode GeoJSON: {exc}") from exc
    return text.encode("utf-8")
