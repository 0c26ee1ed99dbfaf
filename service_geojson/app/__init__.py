"""
GeoJSON service package: OpenStreetMap sub-area extraction and serving.

The service turns an administrative relation into a GeoJSON FeatureCollection
of its sub-areas, either once from the command line or on demand over HTTP:
- Resolution: breadth-first walk of the relation membership graph
- Merging: sub-areas sharing a normalized name and admin level become one feature
- Storage: deterministic artifact names with atomic writes
- Rate limiting: per-client token buckets in front of the HTTP routes

Structure:
- app.main: FastAPI app, routes, and middleware wiring.
- app.cli: subarea and serve commands.
- app.context: immutable resolution context and request types.
- app.subareas: resolve → merge → store pipeline.
- app.osm: upstream client, models, tags, geometry and resolver.
- app.storage: GeoJSON serialization and the output store.
- app.ratelimit: Token-bucket limiter and client identity.
"""
