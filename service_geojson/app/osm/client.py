"""
OpenStreetMap API client.

Fetches one relation with its member ways and nodes through the API 0.6
``/relation/{id}/full.json`` endpoint and turns the payload into a
:class:`Relation`. Failures are classified so callers can tell a missing
relation (never retried) from throttling and transient failures (retried with
backoff).
"""

from typing import Any, Dict, List, Optional

import httpx

from shared.errors import (
    RelationNotFoundError,
    UpstreamRateLimitedError,
    UpstreamTransientError,
    UpstreamUnavailableError,
)
from shared.logging import null_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, RetryError, retry_on_exception

from .models import Member, Relation, Way

NOT_FOUND_STATUSES = (404, 410)
RATE_LIMITED_STATUSES = (429, 509)


class OsmApiClient:
    """Async client for relation lookups against the OSM API."""

    def __init__(
        self,
        base_url: str = "https://api.openstreetmap.org/api/0.6",
        *,
        timeout: float = 30.0,
        retry_config: Optional[RetryConfig] = None,
        user_agent: str = "osm-geojson/0.1.0",
        logger: Any = None,
        metrics: Optional[MetricsCollector] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.logger = logger if logger is not None else null_logger()
        self.metrics = metrics
        self.retry_config = retry_config or RetryConfig(
            max_attempts=3,
            base_delay=0.5,
            max_delay=5.0,
            exponential_base=2.0,
            jitter=True
        )
        self._client = httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": user_agent, "Accept": "application/json"},
            transport=transport,
        )
        self._fetch_with_retry = retry_on_exception(
            (UpstreamTransientError,), config=self.retry_config, logger=self.logger
        )(self._fetch_once)

    @classmethod
    def from_context(cls, ctx, *, metrics: Optional[MetricsCollector] = None,
                     transport: Optional[httpx.AsyncBaseTransport] = None) -> "OsmApiClient":
        config = ctx.config
        return cls(
            config.osm_api_url,
            timeout=config.upstream_timeout,
            retry_config=RetryConfig(
                max_attempts=config.upstream_max_attempts,
                base_delay=config.upstream_base_delay,
                max_delay=config.upstream_max_delay,
            ),
            user_agent=config.user_agent,
            logger=ctx.logger,
            metrics=metrics,
            transport=transport,
        )

    async def __aenter__(self) -> "OsmApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch_relation(self, relation_id: int) -> Relation:
        """Fetch a relation with its ways and nodes.

        Raises:
            RelationNotFoundError: upstream reports the relation missing or deleted.
            UpstreamUnavailableError: any other failure, after retries where retryable.
        """
        try:
            relation = await self._fetch_with_retry(relation_id)
        except RetryError as exc:
            self._count("unavailable")
            raise UpstreamUnavailableError(
                relation_id,
                f"failed after {exc.attempts} attempts",
                {"last_error": str(exc.last_exception)},
            ) from exc
        except RelationNotFoundError:
            self._count("not_found")
            raise
        except UpstreamUnavailableError:
            self._count("unavailable")
            raise
        self._count("ok")
        return relation

    async def _fetch_once(self, relation_id: int) -> Relation:
        url = f"{self.base_url}/relation/{relation_id}/full.json"
        try:
            response = await self._client.get(url)
        except httpx.TimeoutException as exc:
            raise UpstreamTransientError(f"timeout fetching relation {relation_id}") from exc
        except httpx.HTTPError as exc:
            raise UpstreamTransientError(f"network error fetching relation {relation_id}: {exc}") from exc

        status = response.status_code
        if status in NOT_FOUND_STATUSES:
            self.logger.info("Relation not found upstream", relation_id=relation_id, status_code=status)
            raise RelationNotFoundError(relation_id, {"status_code": status})
        if status in RATE_LIMITED_STATUSES:
            retry_after = _retry_after_seconds(response.headers.get("Retry-After"))
            raise UpstreamRateLimitedError(
                f"rate limited fetching relation {relation_id}",
                {"status_code": status, "retry_after": retry_after},
                retry_after=retry_after,
            )
        if status >= 500:
            raise UpstreamTransientError(
                f"status {status} fetching relation {relation_id}", {"status_code": status}
            )
        if status != 200:
            raise UpstreamUnavailableError(
                relation_id, f"unexpected status {status}", {"status_code": status}
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamTransientError(f"malformed payload for relation {relation_id}") from exc

        self.logger.debug("Relation fetched", relation_id=relation_id, url=url)
        return parse_full_relation(relation_id, payload)

    def _count(self, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter("upstream_fetches_total", outcome=outcome)


def _retry_after_seconds(value: Optional[str]) -> Optional[float]:
    """Retry-After in seconds; HTTP-date values are ignored."""
    try:
        return max(0.0, float(value)) if value else None
    except ValueError:
        return None


def parse_full_relation(relation_id: int, payload: Dict[str, Any]) -> Relation:
    """Build a :class:`Relation` from an OSM JSON ``/full`` payload.

    Any element that cannot be decoded makes the whole payload malformed,
    which is reported as :class:`UpstreamTransientError` so it is retried.
    """
    elements = payload.get("elements") if isinstance(payload, dict) else None
    if not isinstance(elements, list):
        raise UpstreamTransientError(f"payload for relation {relation_id} has no elements")

    try:
        return _decode_elements(relation_id, elements)
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise UpstreamTransientError(
            f"malformed payload for relation {relation_id}", {"error": repr(exc)}
        ) from exc


def _decode_elements(relation_id: int, elements: List[Dict[str, Any]]) -> Relation:
    nodes: Dict[int, tuple] = {}
    raw_ways: Dict[int, list] = {}
    relation_element = None
    for element in elements:
        etype = element.get("type")
        if etype == "node" and "lat" in element and "lon" in element:
            nodes[int(element["id"])] = (float(element["lon"]), float(element["lat"]))
        elif etype == "way":
            raw_ways[int(element["id"])] = list(element.get("nodes", []))
        elif etype == "relation" and element.get("id") == relation_id:
            relation_element = element

    if relation_element is None:
        raise UpstreamTransientError(f"payload does not contain relation {relation_id}")

    members = [
        Member(type=m.get("type", ""), ref=int(m["ref"]), role=(m.get("role") or "").strip())
        for m in relation_element.get("members", [])
        if "ref" in m
    ]
    ways = {
        way_id: Way(id=way_id, coords=tuple(nodes[n] for n in node_ids if n in nodes))
        for way_id, node_ids in raw_ways.items()
    }
    member_nodes = {m.ref: nodes[m.ref] for m in members if m.type == "node" and m.ref in nodes}

    return Relation(
        id=relation_id,
        tags=dict(relation_element.get("tags") or {}),
        members=members,
        ways=ways,
        nodes=member_nodes,
    )
