"""
Artifact storage for the GeoJSON service: deterministic naming, existence
lookup, atomic writes, and per-key single-flight computation.
"""

from .geojson import dumps, feature_collection
from .store import OutputStore, artifact_name, parse_artifact, write_path

__all__ = [
    "OutputStore",
    "artifact_name",
    "parse_artifact",
    "write_path",
    "dumps",
    "feature_collection",
]
