import math

import numpy
import pytest
import shapely.geometry

from geotree import RTreeIndex
from geotree.core.geometry import ShapelyGeometries
from geotree.core.predicates import PredicateEvaluator
from geotree.errors import ConcurrentModification
from geotree.pipes import Flow, QueryPipeline


@pytest.fixture
def places():
    return {
        "A": shapely.geometry.Point(10, 10),
        "B": shapely.geometry.Point(10, 20),
        "C": shapely.geometry.Point(50, 50),
    }


@pytest.fixture
def place_index(places):
    index = RTreeIndex(max_fanout=2)
    for name, geom in places.items():
        index.insert(geom, name, geometry=name)
    return index


@pytest.fixture
def grid_index():
    index = RTreeIndex(max_fanout=4)
    rng = numpy.random.default_rng(3)
    for i, (x, y) in enumerate(rng.uniform(0, 30, size=(300, 2))):
        index.insert((x, y), i)
    return index


def test_window_then_distance(place_index, places):
    geometries = ShapelyGeometries(places)
    evaluator = PredicateEvaluator(geometries)
    pipe = QueryPipeline.start_intersect_window(
        place_index, (0, 0, 10, 15), geometries) \
        .within_distance(shapely.geometry.Point(10, 10), 15, evaluator)
    assert pipe.payloads() == ["A"]
    assert all(isinstance(flow, Flow) for flow in pipe)


def test_start_within_distance(place_index, places):
    geometries = ShapelyGeometries(places)
    pipe = QueryPipeline.start_within_distance(
        place_index, shapely.geometry.Point(10, 10), 15, geometries)
    assert sorted(pipe.payloads()) == ["A", "B"]
    empty = QueryPipeline.start_within_distance(
        place_index, shapely.geometry.Polygon(), 15, geometries)
    assert empty.to_list() == []


def test_intersect_window_uses_exact_geometry():
    lines = {
        "diagonal": shapely.geometry.LineString([(0, 0), (10, 10)]),
        "flat": shapely.geometry.LineString([(0, 1), (10, 1)]),
    }
    index = RTreeIndex()
    for name, geom in lines.items():
        index.insert(geom, name, geometry=name)
    pipe = QueryPipeline.start_intersect_window(index, (6, 0, 10, 4),
                                                ShapelyGeometries(lines))
    assert pipe.payloads() == ["flat"]
    assert QueryPipeline.start_search(index, (6, 0, 10, 4)).count() == 2


def test_true_nearest_matches_brute_force():
    rng = numpy.random.default_rng(8)
    lines = {}
    index = RTreeIndex(max_fanout=6)
    for i, (x, y, dx, dy) in enumerate(rng.uniform(0, 50, size=(150, 4))):
        lines[i] = shapely.geometry.LineString([(x, y), (x + dx / 5,
                                                         y - dy / 5)])
        index.insert(lines[i], i, geometry=i)
    query = shapely.geometry.Point(25, 25)
    brute = sorted(geom.distance(query) for geom in lines.values())
    pipe = QueryPipeline.start_nearest(index, query, k=20,
                                       geometries=ShapelyGeometries(lines))
    flows = pipe.to_list()
    assert len(flows) == 20
    assert [f.distance for f in flows] == pytest.approx(brute[:20])
    for flow in flows:
        assert lines[flow.entry.payload].distance(query) == \
            pytest.approx(flow.distance)


def test_true_nearest_bounded(place_index, places):
    pipe = QueryPipeline.start_nearest(
        place_index, shapely.geometry.Point(0, 10), max_distance=20,
        geometries=ShapelyGeometries(places))
    assert pipe.payloads() == ["A", "B"]
    assert [f.distance for f in pipe] == pytest.approx(
        [10., math.hypot(10, 10)])


def test_nearest_on_envelopes(place_index):
    flows = QueryPipeline.start_nearest(place_index, (10, 12), k=2).to_list()
    assert [f.entry.payload for f in flows] == ["A", "B"]
    assert [f.distance for f in flows] == pytest.approx([2., 8.])
    with pytest.raises(ValueError):
        QueryPipeline.start_nearest(place_index, (0, 0), k=-1)


def test_range_pages_concatenate(grid_index):
    base = QueryPipeline.start_nearest(grid_index, (15., 15.))
    pages = [base.range(low, low + 99).payloads() for low in (0, 100, 200)]
    assert sum(pages, []) == base.payloads()
    assert [len(p) for p in pages] == [100, 100, 100]
    assert base.range(250, 400).count() == 50
    with pytest.raises(ValueError):
        base.range(10, 5)


def test_properties_are_copied_only_within_range(grid_index):
    looked_up = []

    def lookup(payload):
        looked_up.append(payload)
        return {"name": "place-{}".format(payload), "rank": payload}

    pipe = QueryPipeline.start_nearest(grid_index, (15., 15.)) \
        .range(100, 199) \
        .copy_properties(lookup, ["name", "missing"])
    flows = pipe.to_list()
    assert len(looked_up) == 100
    assert [f.entry.payload for f in flows] == looked_up
    assert flows[0].properties == {
        "name": "place-{}".format(flows[0].entry.payload)}


def test_copy_properties_from_mapping(place_index):
    records = {name: {"name": name.lower()} for name in "ABC"}
    pipe = QueryPipeline.start_search(place_index) \
        .copy_properties(records, ["name"]) \
        .project(lambda flow: flow.properties["name"])
    assert sorted(pipe) == ["a", "b", "c"]


def test_pipelines_are_restartable_and_immutable(grid_index):
    base = QueryPipeline.start_search(grid_index, (0, 0, 10, 10))
    limited = base.limit(5)
    assert len(limited.to_list()) == 5
    assert limited.payloads() == limited.payloads()
    assert base.count() > 5
    assert repr(limited) == "<QueryPipeline stages=1>"


def test_sort_filter_and_first(place_index):
    pipe = QueryPipeline.start_search(place_index) \
        .filter(lambda flow: flow.entry.payload != "B") \
        .sort(key=lambda flow: flow.entry.payload, reverse=True)
    assert pipe.payloads() == ["C", "A"]
    assert pipe.first().entry.payload == "C"
    assert QueryPipeline.start_search(place_index, (100, 100)).first() is None
    by_distance = QueryPipeline.start_nearest(place_index, (50, 40)) \
        .sort()
    assert by_distance.payloads() == ["C", "B", "A"]


def test_queries_do_not_mutate_the_index(grid_index):
    version = grid_index.store.version
    size = len(grid_index)
    QueryPipeline.start_nearest(grid_index, (3, 4)).range(5, 50).to_list()
    QueryPipeline.start_search(grid_index, (0, 0, 20, 20)).count()
    assert grid_index.store.version == version
    assert len(grid_index) == size
    assert grid_index.validate()


def test_where_validates_relations(place_index, places):
    evaluator = PredicateEvaluator(ShapelyGeometries(places))
    base = QueryPipeline.start_search(place_index)
    with pytest.raises(ValueError):
        base.where("nearby", "A", evaluator)
    within = base.where("within", shapely.geometry.box(0, 0, 20, 30),
                        evaluator)
    assert sorted(within.payloads()) == ["A", "B"]
    pattern = base.where("T*F**F***", shapely.geometry.box(0, 0, 20, 30),
                         evaluator)
    assert sorted(pattern.payloads()) == ["A", "B"]


def test_pipeline_fails_fast_on_mutation(grid_index):
    flows = iter(QueryPipeline.start_search(grid_index).limit(1000))
    next(flows)
    grid_index.insert((1, 1), "late")
    with pytest.raises(ConcurrentModification):
        list(flows)


def test_within_distance_stage_needs_a_distance(place_index, places):
    evaluator = PredicateEvaluator(ShapelyGeometries(places))
    base = QueryPipeline.start_search(place_index)
    with pytest.raises(ValueError):
        base.where("within_distance", "A", evaluator)
    with pytest.raises(ValueError):
        base.within_distance("A", -1, evaluator)
    assert sorted(base.within_distance("A", 10, evaluator).payloads()) == \
        ["A", "B"]
