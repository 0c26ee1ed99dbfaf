"""OpenStreetMap sub-area GeoJSON generator and server."""

__version__ = "0.1.0"
