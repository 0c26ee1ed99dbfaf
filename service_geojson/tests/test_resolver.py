"""
Unit tests for the sub-area resolver.
"""

import asyncio

import httpx
import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_geojson.app.context import Context
from service_geojson.app.osm.client import OsmApiClient
from service_geojson.app.osm.geometry import merge_subareas
from service_geojson.app.osm.resolver import SubAreaResolver
from shared.errors import (
    CycleDetectedError,
    InvalidInputError,
    MissingGeometryError,
    RelationNotFoundError,
    UpstreamTransientError,
    UpstreamUnavailableError,
)
from shared.retry import RetryConfig
from shared.test_helpers import FakeOsmClient, RelationFactory, full_payload, square


@pytest.fixture
def relations():
    factory = RelationFactory()
    return [
        factory.area(1, {"name": "Country", "admin_level": "2"}, outer=[square(0, 0, 100)], children=[12, 10, 11]),
        factory.area(10, {"name": "North", "admin_level": "4"}, outer=[square(0, 0)], children=[20]),
        factory.area(11, {"name": "South", "admin_level": "4"}, outer=[square(2, 0)], children=[1]),
        factory.area(12, {"name": "East", "admin_level": "4"}, outer=[square(4, 0)]),
        factory.area(20, {"name": "North City", "admin_level": "8"}, outer=[square(0, 0, 0.5)], children=[10]),
    ]


class TestSubAreaResolver:
    """Test cases for SubAreaResolver."""

    @pytest.mark.asyncio
    async def test_recurses_through_every_level_by_default(self, relations):
        client = FakeOsmClient(relations)
        result = await SubAreaResolver(Context.create(), client).resolve(1)

        assert result.root.id == 1
        assert [s.id for s in result.subareas] == [10, 11, 12, 20]
        assert sorted(client.calls) == [1, 10, 11, 12, 20]
        assert not result.partial

    @pytest.mark.asyncio
    async def test_depth_limit_stops_expansion(self, relations):
        client = FakeOsmClient(relations)
        result = await SubAreaResolver(Context.create(max_depth=1), client).resolve(1)

        assert [s.id for s in result.subareas] == [10, 11, 12]
        assert all(s.parent_id == 1 and s.depth == 1 for s in result.subareas)
        assert 20 not in client.calls
        assert not result.partial

    @pytest.mark.asyncio
    async def test_unlimited_depth_follows_nesting(self, relations):
        client = FakeOsmClient(relations)
        ctx = Context.create(max_depth=0)
        result = await SubAreaResolver(ctx, client).resolve("r1")

        assert [s.id for s in result.subareas] == [10, 11, 12, 20]
        north_city = result.subareas[-1]
        assert north_city.parent_id == 10
        assert north_city.depth == 2

    @pytest.mark.asyncio
    async def test_cycles_are_noted_and_terminate(self, relations):
        client = FakeOsmClient(relations)
        result = await SubAreaResolver(Context.create(max_depth=0), client).resolve(1)

        assert sorted((c.relation_id, c.parent_id) for c in result.cycles) == [(1, 11), (10, 20)]
        assert all(isinstance(c, CycleDetectedError) for c in result.cycles)
        assert result.shared == []
        assert sorted(client.calls) == [1, 10, 11, 12, 20]
        assert not result.partial

    @pytest.mark.asyncio
    async def test_each_relation_fetched_once(self):
        factory = RelationFactory()
        relations = [
            factory.area(1, children=[2, 3]),
            factory.area(2, {"name": "A"}, outer=[square(0, 0)], children=[4]),
            factory.area(3, {"name": "B"}, outer=[square(2, 0)], children=[4]),
            factory.area(4, {"name": "C"}, outer=[square(4, 0)]),
        ]
        client = FakeOsmClient(relations)
        result = await SubAreaResolver(Context.create(max_depth=0), client).resolve(1)

        assert sorted(client.calls) == [1, 2, 3, 4]
        assert [s.id for s in result.subareas] == [2, 3, 4]
        # the lower parent claims the shared child
        assert result.subareas[-1].parent_id == 2
        assert result.cycles == []
        assert result.shared == [(4, 3)]

    @pytest.mark.asyncio
    async def test_branch_failure_is_partial(self, relations):
        client = FakeOsmClient(relations, errors={12: UpstreamUnavailableError(12, "failed after 3 attempts")})
        result = await SubAreaResolver(Context.create(), client).resolve(1)

        assert [s.id for s in result.subareas] == [10, 11, 20]
        assert result.partial
        assert [f.relation_id for f in result.failures] == [12]
        assert result.summary()["failures"] == ["relation 12: failed after 3 attempts"]

    @pytest.mark.asyncio
    async def test_missing_child_is_partial(self, relations):
        client = FakeOsmClient([r for r in relations if r.id != 11])
        result = await SubAreaResolver(Context.create(), client).resolve(1)

        assert [s.id for s in result.subareas] == [10, 12, 20]
        assert isinstance(result.failures[0], RelationNotFoundError)

    @pytest.mark.asyncio
    async def test_root_failure_is_fatal(self, relations):
        client = FakeOsmClient(relations, errors={1: UpstreamUnavailableError(1, "down")})
        with pytest.raises(UpstreamUnavailableError):
            await SubAreaResolver(Context.create(), client).resolve(1)

    @pytest.mark.asyncio
    async def test_unknown_root_raises_not_found(self):
        with pytest.raises(RelationNotFoundError):
            await SubAreaResolver(Context.create(), FakeOsmClient()).resolve(404)

    @pytest.mark.asyncio
    async def test_invalid_root_rejected_before_fetching(self):
        client = FakeOsmClient()
        with pytest.raises(InvalidInputError):
            await SubAreaResolver(Context.create(), client).resolve("not-a-relation")
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_relation_without_geometry_is_skipped_but_expanded(self):
        factory = RelationFactory()
        relations = [
            factory.area(1, children=[2]),
            factory.area(2, {"name": "Group"}, children=[3]),
            factory.area(3, {"name": "Leaf"}, outer=[square(0, 0)]),
        ]
        result = await SubAreaResolver(Context.create(max_depth=0), FakeOsmClient(relations)).resolve(1)

        assert [s.id for s in result.subareas] == [3]
        assert isinstance(result.failures[0], MissingGeometryError)

    @pytest.mark.asyncio
    async def test_order_independent_of_fetch_timing(self, relations):
        fast = await SubAreaResolver(Context.create(), FakeOsmClient(relations)).resolve(1)
        slow = await SubAreaResolver(Context.create(), FakeOsmClient(relations, delay=0.01)).resolve(1)
        assert [s.id for s in fast.subareas] == [s.id for s in slow.subareas]

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self):
        factory = RelationFactory()
        children = list(range(2, 12))
        relations = [factory.area(1, children=children)] + [
            factory.area(i, {"name": f"Area {i}"}, outer=[square(i * 2, 0)]) for i in children
        ]
        client = FakeOsmClient(relations, delay=0.01)
        await SubAreaResolver(Context.create(), client, concurrency=3).resolve(1)
        assert client.max_in_flight == 3

    @pytest.mark.asyncio
    async def test_tags_normalized_unless_raw(self):
        factory = RelationFactory()
        relations = [
            factory.area(1, children=[2]),
            factory.area(2, {"Name": " Paris ", "admin-level": "8"}, outer=[square(0, 0)]),
        ]
        normalized = await SubAreaResolver(Context.create(), FakeOsmClient(relations)).resolve(1)
        raw = await SubAreaResolver(Context.create(raw=True), FakeOsmClient(relations)).resolve(1)

        assert normalized.subareas[0].tags == {"name": "Paris", "admin_level": "8"}
        assert raw.subareas[0].tags == {"Name": " Paris ", "admin-level": "8"}

    @pytest.mark.asyncio
    async def test_raw_and_normalized_runs_group_identically(self):
        factory = RelationFactory()
        relations = [
            factory.area(1, children=[2, 3, 4]),
            factory.area(2, {"name": "Paris", "admin_level": "8"}, outer=[square(0, 0)]),
            factory.area(3, {"Name": "PARIS ", "admin-level": "8"}, outer=[square(2, 0)]),
            factory.area(4, {"name": "Lyon", "admin_level": "8"}, outer=[square(4, 0)]),
        ]
        groups = []
        for raw in (False, True):
            result = await SubAreaResolver(Context.create(raw=raw), FakeOsmClient(relations)).resolve(1)
            groups.append([s.member_ids for s in merge_subareas(result.subareas, combine=True)])

        assert groups[0] == groups[1] == [[2, 3], [4]]

    @pytest.mark.asyncio
    async def test_cancellation_stops_in_flight_fetches(self, relations):
        client = FakeOsmClient(relations, delays={10: 10, 11: 10, 12: 10})
        task = asyncio.create_task(SubAreaResolver(Context.create(), client).resolve(1))
        while len(client.calls) < 4:
            await asyncio.sleep(0)
        assert client.in_flight == 3

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert client.in_flight == 0

    @pytest.mark.asyncio
    async def test_unexpected_error_cancels_sibling_fetches(self, relations):
        client = FakeOsmClient(relations, errors={10: RuntimeError("decoder bug")}, delays={11: 10, 12: 10})
        with pytest.raises(RuntimeError):
            await SubAreaResolver(Context.create(), client).resolve(1)
        assert client.in_flight == 0

    @pytest.mark.asyncio
    async def test_any_upstream_error_below_root_is_partial(self, relations):
        client = FakeOsmClient(relations, errors={11: UpstreamTransientError("malformed payload for relation 11")})
        result = await SubAreaResolver(Context.create(), client).resolve(1)

        assert [s.id for s in result.subareas] == [10, 12, 20]
        assert [f.code for f in result.failures] == ["UPSTREAM_TRANSIENT"]


class TestResolverOverHttp:
    """Resolver driven through OsmApiClient and a mock transport."""

    @pytest.mark.asyncio
    async def test_malformed_child_payload_is_partial(self):
        factory = RelationFactory()
        payloads = {
            1: full_payload(factory.area(1, {"name": "Root"}, children=[10, 11])),
            10: full_payload(factory.area(10, {"name": "Good", "admin_level": "8"}, outer=[square(0, 0)])),
            11: full_payload(factory.area(11, {"name": "Broken", "admin_level": "8"}, outer=[square(2, 0)])),
        }
        for element in payloads[11]["elements"]:
            if element["type"] == "way":
                del element["id"]
        requests = []

        def handler(request):
            relation_id = int(request.url.path.split("/")[-2])
            requests.append(relation_id)
            return httpx.Response(200, json=payloads[relation_id])

        client = OsmApiClient(
            "https://osm.test/api/0.6",
            retry_config=RetryConfig(max_attempts=2, base_delay=0, max_delay=0, jitter=False),
            transport=httpx.MockTransport(handler),
        )
        async with client:
            result = await SubAreaResolver(Context.create(), client).resolve(1)

        assert [s.id for s in result.subareas] == [10]
        assert [f.relation_id for f in result.failures] == [11]
        assert isinstance(result.failures[0], UpstreamUnavailableError)
        assert requests.count(11) == 2
