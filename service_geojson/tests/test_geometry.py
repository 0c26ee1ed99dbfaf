"""
Unit tests for area assembly and sub-area merging.
"""

import itertools

import pytest
from shapely.geometry import MultiPolygon, Polygon

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_geojson.app.osm.geometry import build_area, merge_subareas, polygons_of
from service_geojson.app.osm.models import Member, Relation, Way
from shared.test_helpers import RelationFactory, make_subarea, square


class TestBuildArea:
    """Test cases for build_area."""

    @pytest.fixture
    def factory(self):
        return RelationFactory()

    def test_single_closed_way(self, factory):
        relation = factory.area(1, outer=[square(0, 0, 2)])
        area = build_area(relation)
        assert isinstance(area, Polygon)
        assert area.area == pytest.approx(4.0)

    def test_ring_split_across_ways(self):
        ring = square(0, 0, 2)
        ways = {10: Way(10, ring[:3]), 11: Way(11, ring[2:])}
        relation = Relation(
            id=1,
            members=[Member("way", 10, "outer"), Member("way", 11, "outer")],
            ways=ways,
        )
        area = build_area(relation)
        assert isinstance(area, Polygon)
        assert area.area == pytest.approx(4.0)

    def test_inner_ring_becomes_hole(self, factory):
        relation = factory.area(1, outer=[square(0, 0, 4)], inner=[square(1, 1, 1)])
        area = build_area(relation)
        assert isinstance(area, Polygon)
        assert len(area.interiors) == 1
        assert area.area == pytest.approx(15.0)

    def test_disjoint_outers_make_multipolygon(self, factory):
        relation = factory.area(1, outer=[square(5, 0), square(0, 0)])
        area = build_area(relation)
        assert isinstance(area, MultiPolygon)
        # shells come out in a stable order regardless of member order
        assert [p.bounds for p in area.geoms] == [square_bounds(0, 0), square_bounds(5, 0)]

    def test_empty_role_counts_as_outer(self):
        relation = Relation(id=1, members=[Member("way", 10, "")], ways={10: Way(10, square(0, 0))})
        assert isinstance(build_area(relation), Polygon)

    def test_no_ways_gives_none(self, factory):
        assert build_area(factory.area(1, children=[2, 3])) is None

    def test_open_way_gives_none(self):
        relation = Relation(
            id=1,
            members=[Member("way", 10, "outer")],
            ways={10: Way(10, ((0, 0), (1, 0), (1, 1)))},
        )
        assert build_area(relation) is None

    def test_node_members_contribute_nothing(self, factory):
        relation = factory.area(1, outer=[square(0, 0)])
        relation.members.append(Member("node", 99, "admin_centre"))
        relation.nodes[99] = (0.5, 0.5)
        assert isinstance(build_area(relation), Polygon)


def square_bounds(x, y, size=1.0):
    return (x, y, x + size, y + size)


class TestMergeSubareas:
    """Test cases for merge_subareas."""

    def test_separated_mode_passes_through_sorted(self):
        subareas = [make_subarea(3, {"name": "A"}), make_subarea(1, {"name": "A"})]
        result = merge_subareas(subareas, combine=False)
        assert [s.id for s in result] == [1, 3]
        assert all(not s.merged for s in result)
        assert all(isinstance(s.geometry, Polygon) for s in result)

    def test_same_identity_merges(self):
        subareas = [
            make_subarea(2, {"name": "Paris", "admin_level": "8"}),
            make_subarea(1, {"Name": " paris ", "admin_level": "8"}),
            make_subarea(3, {"name": "Lyon", "admin_level": "8"}),
        ]
        result = merge_subareas(subareas, combine=True)
        assert [s.id for s in result] == [1, 3]
        paris = result[0]
        assert paris.merged is True
        assert paris.member_ids == [1, 2]
        assert isinstance(paris.geometry, MultiPolygon)
        assert len(paris.geometry.geoms) == 2
        # tags of the lowest id win
        assert paris.tags == {"Name": " paris ", "admin_level": "8"}

    def test_group_of_one_is_wrapped(self):
        result = merge_subareas([make_subarea(7, {"name": "Solo"})], combine=True)
        assert len(result) == 1
        assert result[0].merged is True
        assert result[0].member_ids == [7]
        assert isinstance(result[0].geometry, MultiPolygon)

    def test_unnamed_subareas_never_merge(self):
        subareas = [make_subarea(1, {}), make_subarea(2, {})]
        result = merge_subareas(subareas, combine=True)
        assert [s.member_ids for s in result] == [[1], [2]]

    def test_polygons_not_dissolved(self):
        # overlapping squares stay as two polygons
        subareas = [
            make_subarea(1, {"name": "X"}, ring=square(0, 0, 2)),
            make_subarea(2, {"name": "X"}, ring=square(1, 1, 2)),
        ]
        merged = merge_subareas(subareas, combine=True)[0]
        assert len(polygons_of(merged.geometry)) == 2

    def test_result_independent_of_input_order(self):
        subareas = [
            make_subarea(1, {"name": "A"}),
            make_subarea(2, {"name": "B"}),
            make_subarea(3, {"name": "A"}),
            make_subarea(4, {}),
        ]
        expected = _shape(merge_subareas(subareas, combine=True))
        for permutation in itertools.permutations(subareas):
            assert _shape(merge_subareas(list(permutation), combine=True)) == expected

    def test_merging_in_stages_matches_single_pass(self):
        a = [make_subarea(1, {"name": "A"}), make_subarea(4, {"name": "B"})]
        b = [make_subarea(2, {"name": "A"}), make_subarea(3, {"name": "B"})]
        single = merge_subareas(a + b, combine=True)

        staged = merge_subareas(
            merge_subareas(a, combine=True) + merge_subareas(b, combine=True),
            combine=True,
        )
        assert [s.member_ids for s in single] == [[1, 2], [3, 4]]
        assert sorted(p.bounds for s in staged for p in polygons_of(s.geometry)) == sorted(
            p.bounds for s in single for p in polygons_of(s.geometry)
        )
        assert [s.id for s in staged] == [s.id for s in single]


def _shape(subareas):
    return [
        (s.id, s.member_ids, [p.bounds for p in polygons_of(s.geometry)], sorted(s.tags.items()))
        for s in subareas
    ]
