import itertools
import threading

import pytest

from geotree.core.geometry import ShapelyGeometries, envelope_geometry
from geotree.core.predicates import PredicateEvaluator
from geotree.envelope import Envelope


@pytest.fixture
def geoms():
    import shapely.geometry
    return {
        "square": shapely.geometry.box(0, 0, 10, 10),
        "inner": shapely.geometry.box(2, 2, 4, 4),
        "neighbour": shapely.geometry.box(10, 0, 20, 10),
        "overlapping": shapely.geometry.box(5, 5, 15, 15),
        "crossing": shapely.geometry.LineString([(-5, 5), (15, 5)]),
        "diagonal": shapely.geometry.LineString([(0, 0), (10, 10)]),
        "on_boundary": shapely.geometry.Point(10, 5),
        "inside": shapely.geometry.Point(5, 5),
        "corner": shapely.geometry.Point(0, 0),
        "far": shapely.geometry.Point(100, 100),
        "empty": shapely.geometry.Polygon(),
    }


@pytest.fixture
def evaluator(geoms):
    return PredicateEvaluator(ShapelyGeometries(geoms))


def test_containment(evaluator):
    assert evaluator.contains("square", "inner")
    assert evaluator.within("inner", "square")
    assert not evaluator.contains("inner", "square")
    assert evaluator.contains("square", "inside")


def test_boundary_is_covered_not_contained(evaluator):
    assert not evaluator.contains("square", "on_boundary")
    assert not evaluator.within("on_boundary", "square")
    assert evaluator.covers("square", "on_boundary")
    assert evaluator.covered_by("on_boundary", "square")
    assert evaluator.touches("square", "on_boundary")
    assert evaluator.covers("square", "square")
    assert evaluator.contains("square", "square")


def test_shared_edge_touches_without_overlapping(evaluator):
    assert evaluator.touches("square", "neighbour")
    assert evaluator.intersects("square", "neighbour")
    assert not evaluator.overlaps("square", "neighbour")
    assert not evaluator.disjoint("square", "neighbour")


def test_overlaps_and_crosses(evaluator):
    assert evaluator.overlaps("square", "overlapping")
    assert not evaluator.touches("square", "overlapping")
    assert evaluator.crosses("crossing", "square")
    assert not evaluator.crosses("inner", "square")


def test_zero_area_geometries(evaluator):
    assert evaluator.touches("diagonal", "corner")
    assert evaluator.intersects("diagonal", "inside")
    assert not evaluator.touches("diagonal", "inside")
    assert evaluator.within("diagonal", "square")


def test_disjoint_decided_on_envelopes(evaluator):
    assert evaluator.disjoint("square", "far")
    assert not evaluator.intersects("far", "inner")
    assert evaluator.stats == {"envelope": 2, "exact": 0}


def test_empty_geometry_relates_to_nothing(evaluator):
    for name in ("intersects", "contains", "within", "covers", "covered_by",
                 "crosses", "overlaps", "touches"):
        assert not getattr(evaluator, name)("empty", "square"), name
        assert not getattr(evaluator, name)("square", "empty"), name
    assert evaluator.disjoint("empty", "square")
    assert not evaluator.within_distance("empty", "square", 1000)


def test_duals_agree(geoms, evaluator):
    for a, b in itertools.product(geoms, repeat=2):
        assert evaluator.disjoint(a, b) == (not evaluator.intersects(a, b))
        assert evaluator.within(a, b) == evaluator.contains(b, a)
        assert evaluator.covered_by(a, b) == evaluator.covers(b, a)


def test_predicates_agree_with_shapely(geoms, evaluator):
    for a, b in itertools.product(geoms, repeat=2):
        ga, gb = geoms[a], geoms[b]
        if ga.is_empty or gb.is_empty:
            continue
        for name in ("intersects", "contains", "within", "covers",
                     "covered_by", "crosses", "overlaps", "touches"):
            assert getattr(evaluator, name)(a, b) == \
                getattr(ga, name)(gb), (name, a, b)


def test_within_distance(evaluator):
    assert evaluator.within_distance("square", "far", 128)
    assert not evaluator.within_distance("square", "far", 127)
    assert evaluator.within_distance("inside", "inside", 0)
    assert evaluator.within_distance("square", "neighbour", 0)
    with pytest.raises(ValueError):
        evaluator.within_distance("square", "far", -1)


def test_within_distance_is_inclusive():
    import shapely.geometry
    evaluator = PredicateEvaluator(ShapelyGeometries())
    a = shapely.geometry.Point(0, 0)
    b = shapely.geometry.Point(3, 4)
    assert evaluator.within_distance(a, b, 5)
    assert not evaluator.within_distance(a, b, 4.999)


def test_intersects_window(evaluator):
    window = Envelope(0, 0, 10, 10)
    assert evaluator.intersects_window("inside", window)
    assert evaluator.stats["exact"] == 0
    assert not evaluator.intersects_window("diagonal", Envelope(6, 0, 10, 4))
    assert evaluator.stats["exact"] == 1
    assert evaluator.intersects_window("crossing", Envelope(0, 4, 1, 6))
    assert not evaluator.intersects_window("far", window)
    assert evaluator.intersects_window("corner", Envelope.point(0, 0))


def test_relate_patterns(evaluator, geoms):
    assert evaluator.relate("square", "inner", "T*****FF*")
    assert evaluator.evaluate("T*****FF*", "square", "inner")
    assert not evaluator.relate("inner", "square", "T*****FF*")
    exact = evaluator.stats["exact"]
    assert not evaluator.relate("square", "far", "T********")
    assert evaluator.stats["exact"] == exact
    assert evaluator.geometries.relate("square", "overlapping") == \
        "212101212"


def test_evaluate_dispatch(evaluator):
    assert evaluator.evaluate("touches", "square", "neighbour")
    assert evaluator.evaluate("within_distance", "square", "far",
                              distance=200)
    assert evaluator.evaluate("intersects_window", "inside",
                              Envelope(0, 0, 10, 10))
    with pytest.raises(ValueError):
        evaluator.evaluate("equals-ish", "square", "inner")
    with pytest.raises(ValueError):
        evaluator.evaluate("within_distance", "square", "far")


def test_prepared_query_geometry(geoms):
    provider = ShapelyGeometries(geoms)
    evaluator = PredicateEvaluator(provider)
    prepared = provider.prepare(geoms["square"])
    assert evaluator.within("inner", prepared)
    assert evaluator.covered_by("on_boundary", prepared)
    assert evaluator.intersects(prepared, "crossing")
    assert provider.prepare("inner") == "inner"


def test_envelope_geometry_of_degenerate_boxes():
    assert envelope_geometry(Envelope.point(1, 2)).geom_type == "Point"
    assert envelope_geometry(Envelope(1, 2, 1, 5)).geom_type == "LineString"
    assert envelope_geometry(Envelope(1, 2, 3, 5)).geom_type == "Polygon"
    assert envelope_geometry(Envelope(1, 2, 3, 5)).area == 6


def test_stats_are_exact_across_threads(evaluator):
    def work():
        for _ in range(200):
            evaluator.intersects("square", "far")
            evaluator.touches("square", "neighbour")

    threads = [threading.Thread(target=work) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert evaluator.stats == {"envelope": 800, "exact": 800}
